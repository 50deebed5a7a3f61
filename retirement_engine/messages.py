"""
Typed messages exchanged between the Monte Carlo orchestrator and its worker tasks.

A task always answers with exactly one ``TaskComplete`` or ``TaskError``; the
orchestrator emits ``TaskProgress`` to observers as tasks finish.
"""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class TaskProgress:
    task_id: int
    completed_scenarios: int
    total_scenarios: int

    @property
    def fraction(self):
        return self.completed_scenarios / max(1, self.total_scenarios)


@dataclass(frozen=True)
class TaskComplete:
    task_id: int
    results: tuple                       # ScenarioResult, in scenario order
    aborted: Tuple[Tuple[int, str], ...]  # (scenario_index, reason) of aborted scenarios


@dataclass(frozen=True)
class TaskError:
    task_id: int
    indices: Tuple[int, ...]
    error_type: str
    message: str
    traceback: str

