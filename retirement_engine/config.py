"""
Configuration classes for the retirement projection engine
"""
import logging
import multiprocessing as mp

from .errors import InvalidParameterError

logger = logging.getLogger(__name__)


class SimulationConfig:
    """Run-time configuration of the Monte Carlo engine (not household inputs)"""
    def __init__(self):
        # Monte Carlo sizes
        self.num_scenarios = 1000  # independent scenarios per run
        self.seed = None  # base seed; scenario i uses base_seed + i
        self.antithetic = False  # pair scenarios (2k, 2k+1) with mirrored market draws

        # Parallelism
        self.num_workers = max(1, mp.cpu_count() - 1)
        self.chunk_size = 50  # scenarios per worker task
        self.inline_threshold = 100  # runs smaller than this stay in-process
        self.task_timeout = None  # seconds per task, None = no limit
        self.max_task_retries = 1  # retries of a crashed/timed-out task before WorkerFailure
        self.max_failed_scenarios = 5  # aborted scenarios tolerated before OrchestrationError

        # Optimizer
        self.success_target = 0.95  # target success probability for sustainable spend
        self.spend_tolerance = 100.0  # binary search stops when high - low <= tolerance
        self.spend_search_low = 20_000.0
        self.spend_search_high = 200_000.0
        self.max_spend_expansions = 5  # doublings of the upper bound while still feasible
        self.max_search_iterations = 30

        # Diagnostics and output
        self.retain_cash_flows = False  # keep every YearlyCashFlowRecord in ScenarioResult
        self.show_progress = True
        self.generate_csv_summary = False
        self.num_sims_to_export = 50  # scenarios whose cash flows are exported to CSV
        self.output_directory = 'Retirement Outputs'

    def validate(self):
        """Validate configuration parameters"""
        errors = []
        if self.num_scenarios < 1:
            errors.append("num_scenarios must be at least 1")
        if self.antithetic and self.num_scenarios % 2:
            errors.append(f"num_scenarios ({self.num_scenarios}) must be even when antithetic pairing is on")
        if self.num_workers < 1:
            errors.append("num_workers must be at least 1")
        if self.chunk_size < 1:
            errors.append("chunk_size must be at least 1")
        if not (0.0 < self.success_target <= 1.0):
            errors.append(f"success_target ({self.success_target}) must be within (0, 1]")
        if self.spend_tolerance <= 0:
            errors.append("spend_tolerance must be positive")
        if not (0 <= self.spend_search_low < self.spend_search_high):
            errors.append(f"spend search range ({self.spend_search_low}-{self.spend_search_high}) "
                          f"must satisfy 0 <= low < high")
        if self.max_search_iterations < 1:
            errors.append("max_search_iterations must be at least 1")
        if self.max_task_retries < 0 or self.max_failed_scenarios < 0:
            errors.append("max_task_retries and max_failed_scenarios must be non-negative")
        if self.seed is not None and (int(self.seed) != self.seed or self.seed < 0):
            errors.append(f"seed ({self.seed}) must be a non-negative integer or None")
        if self.task_timeout is not None and self.task_timeout <= 0:
            errors.append("task_timeout must be positive or None")
        if errors:
            raise InvalidParameterError(errors)
        logger.info("All parameters validated successfully")
