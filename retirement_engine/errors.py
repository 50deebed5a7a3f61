"""
Exception hierarchy for the retirement projection engine.

Depletion of a household's assets is a terminal simulation state and is
reported through ``ScenarioResult``; nothing in this module represents it.
"""


class RetirementEngineError(Exception):
    """Base class for all engine errors"""


class InvalidParameterError(RetirementEngineError, ValueError):
    """Malformed simulation inputs, rejected before any scenario runs"""

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("Parameter validation failed:\n" + "\n".join(self.errors))

    def __reduce__(self):
        return (self.__class__, (self.errors,))


class SimulationRuntimeError(RetirementEngineError, RuntimeError):
    """Numeric failure inside a single scenario (NaN/inf in the state)"""

    def __init__(self, message, scenario_index=None, year_index=None):
        self.scenario_index = scenario_index
        self.year_index = year_index
        super().__init__(message)

    def __reduce__(self):
        return (self.__class__, (self.args[0], self.scenario_index, self.year_index))


class WorkerFailure(RetirementEngineError):
    """A parallel task crashed or timed out after all retries"""

    def __init__(self, message, task_id=None, indices=(), remote_traceback=None):
        self.task_id = task_id
        self.indices = tuple(indices)
        self.remote_traceback = remote_traceback
        detail = message
        if self.indices:
            detail += f" (task {task_id}, scenarios {self.indices[0]}-{self.indices[-1]})"
        if remote_traceback:
            detail += f"\nRemote traceback:\n{remote_traceback}"
        super().__init__(detail)


class OrchestrationError(RetirementEngineError):
    """Run-level failure, e.g. too many aborted scenarios"""


class SimulationCancelled(RetirementEngineError):
    """Raised when a run is cancelled externally or its deadline passes"""
