"""
Monte Carlo Orchestration Module

Runs N independent scenarios, in-process for small runs or across a
``ProcessPoolExecutor`` otherwise, and reduces the completed results into an
``AggregateResult``.

Failure policy:
  - A scenario that raises ``SimulationRuntimeError`` is aborted and excluded
    from aggregation. More than ``config.max_failed_scenarios`` aborted
    scenarios make the run fail with ``OrchestrationError``.
  - A task that crashes (exception outside a scenario, dead worker process) or
    exceeds ``config.task_timeout`` is retried up to ``config.max_task_retries``
    times, then the run fails with ``WorkerFailure`` carrying the task's
    scenario indices and remote traceback. Timeouts apply to pooled runs; a
    timed-out worker is terminated together with its pool.
"""

import time
import traceback
from collections import deque
from concurrent.futures import FIRST_COMPLETED, ProcessPoolExecutor, wait
from concurrent.futures.process import BrokenProcessPool

import numpy as np
import logging
from tqdm import tqdm

from .errors import (InvalidParameterError, OrchestrationError, SimulationCancelled,
                     SimulationRuntimeError, WorkerFailure)
from .messages import TaskComplete, TaskError, TaskProgress
from .results import AggregateResult
from .risk import CVAR_CONFIDENCE, conditional_value_at_risk, sequence_risk_score
from .rng import RandomContext, random_base_seed
from .scenario import ScenarioSimulator
from .utils import percentile_ladder, percentile_rows

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1


def run_scenario_batch(task_id, params, indices, base_seed, antithetic=False, retain_cash_flows=False):
    """Worker function: simulate a chunk of scenarios and answer with one message"""
    try:
        simulator = ScenarioSimulator(params, retain_cash_flows)
        results = []
        aborted = []
        for index in indices:
            context = RandomContext.for_scenario(base_seed, index, antithetic)
            try:
                results.append(simulator.run(context))
            except SimulationRuntimeError as e:
                aborted.append((index, str(e)))
        return TaskComplete(task_id, tuple(results), tuple(aborted))
    except Exception as e:
        return TaskError(task_id, tuple(indices), type(e).__name__, str(e), traceback.format_exc())


def aggregate_results(results, requested, aborted, base_seed, keep_scenarios=True,
                      cvar_confidence=CVAR_CONFIDENCE):
    """
    Reduce completed scenarios (sorted by scenario index) into an AggregateResult.

    Percentiles use sort-and-index: the p-th percentile of n sorted values is
    element floor(p / 100 * (n - 1)). Downside risk adds the CVaR of ending
    balances, per-scenario max-drawdown percentiles and the sequence-of-returns
    risk score.
    """
    completed = len(results)
    if completed == 0:
        raise OrchestrationError(f"No scenarios completed ({aborted} of {requested} aborted)")

    successes = sum(1 for r in results if r.success)
    legacy = sum(1 for r in results if r.legacy_met)
    ending = np.array([r.ending_balance for r in results])
    balance_matrix = np.array([r.balances for r in results])
    depletion_ages = [r.depletion_age for r in results if r.depletion_age is not None]

    return AggregateResult(
        success_probability=successes / completed,
        legacy_success_probability=legacy / completed,
        requested_scenarios=requested,
        completed_scenarios=completed,
        aborted_scenarios=aborted,
        ending_balance_percentiles=percentile_ladder(ending),
        yearly_balance_percentiles=percentile_rows(balance_matrix),
        ages=results[0].ages,
        median_depletion_age=float(np.median(depletion_ages)) if depletion_ages else None,
        ltc_event_rate=sum(1 for r in results if r.ltc_events) / completed,
        mean_total_taxes=float(np.mean([r.total_taxes for r in results])),
        ending_balance_cvar=conditional_value_at_risk(ending, cvar_confidence),
        cvar_confidence=cvar_confidence,
        max_drawdown_percentiles=percentile_ladder([r.max_drawdown for r in results]),
        sequence_risk_score=sequence_risk_score(results),
        base_seed=base_seed,
        scenarios=tuple(results) if keep_scenarios else (),
    )


class MonteCarloOrchestrator:
    """
    Parallel scenario runner.

    Use as a context manager to keep one worker pool alive across many runs
    (the optimizer does this); otherwise each pooled run creates and tears down
    its own pool.

    Parameters:
    -----------
    config : SimulationConfig
    on_message : callable, optional
        Receives ``TaskProgress`` after each finished task
    """

    def __init__(self, config, on_message=None):
        config.validate()
        self.config = config
        self.on_message = on_message
        self._executor = None

    def __enter__(self):
        if self.config.num_workers > 1:
            self._executor = ProcessPoolExecutor(max_workers=self.config.num_workers)
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._executor = None

    def run(self, params, num_scenarios=None, seed=None, cancel_event=None, deadline=None):
        """
        Run the Monte Carlo simulation.

        Args:
            params: SimulationParameters
            num_scenarios: overrides config.num_scenarios
            seed: overrides config.seed; scenario i uses seed + i
            cancel_event: threading.Event checked between tasks
            deadline: time.monotonic() value after which the run is cancelled

        Returns:
            AggregateResult

        Raises:
            InvalidParameterError, OrchestrationError, WorkerFailure, SimulationCancelled
        """
        config = self.config
        params.validate()
        n = int(num_scenarios or config.num_scenarios)
        base_seed = seed if seed is not None else config.seed
        if base_seed is None:
            base_seed = random_base_seed()
            logger.info(f"[MONTE CARLO] No seed configured, using base seed {base_seed}")
        # Surfaces parameter errors (e.g. a non positive-definite correlation matrix) before dispatch
        simulator = ScenarioSimulator(params)
        if config.antithetic:
            if not simulator.return_model.supports_mirror:
                raise InvalidParameterError(f"Antithetic pairing is not available for the "
                                            f"{params.market.distribution} distribution")
            if n % 2:
                raise InvalidParameterError(f"Antithetic pairing needs an even scenario count (got {n})")

        chunk_size = config.chunk_size
        chunks = [tuple(range(start, min(start + chunk_size, n))) for start in range(0, n, chunk_size)]
        progress = tqdm(total=n, desc="Running scenarios", disable=not config.show_progress, leave=False)
        try:
            if config.num_workers <= 1 or n < config.inline_threshold:
                messages = self._run_inline(params, chunks, base_seed, progress, cancel_event, deadline)
            else:
                messages = self._run_pool(params, chunks, base_seed, progress, cancel_event, deadline)
        finally:
            progress.close()

        results = []
        aborted = []
        for task_id in sorted(messages):
            results.extend(messages[task_id].results)
            aborted.extend(messages[task_id].aborted)
        results.sort(key=lambda r: r.scenario_index)

        for index, reason in aborted:
            logger.warning(f"[MONTE CARLO] Scenario {index} aborted: {reason}")
        if len(aborted) > config.max_failed_scenarios:
            raise OrchestrationError(
                f"{len(aborted)} of {n} scenarios aborted, exceeding the limit of "
                f"{config.max_failed_scenarios}. First failure: scenario {aborted[0][0]}: {aborted[0][1]}")

        aggregate = aggregate_results(results, n, len(aborted), base_seed)
        logger.info(f"[MONTE CARLO] {aggregate.completed_scenarios}/{n} scenarios, "
                    f"success probability {aggregate.success_probability * 100:.1f}% "
                    f"(spending ${params.annual_spending:,.0f}, {params.claiming_strategy})")
        return aggregate

    def _check_cancelled(self, cancel_event, deadline):
        if cancel_event is not None and cancel_event.is_set():
            raise SimulationCancelled("Monte Carlo run cancelled")
        if deadline is not None and time.monotonic() >= deadline:
            raise SimulationCancelled("Monte Carlo run exceeded its deadline")

    def _task_done(self, message, completed, total, progress):
        completed[message.task_id] = message
        done = sum(len(m.results) + len(m.aborted) for m in completed.values())
        progress.update(len(message.results) + len(message.aborted))
        if self.on_message is not None:
            self.on_message(TaskProgress(message.task_id, done, total))

    def _worker_failure(self, message):
        return WorkerFailure(f"Task failed after {self.config.max_task_retries} retries: "
                             f"{message.error_type}: {message.message}",
                             task_id=message.task_id, indices=message.indices,
                             remote_traceback=message.traceback)

    def _run_inline(self, params, chunks, base_seed, progress, cancel_event, deadline):
        config = self.config
        total = sum(len(c) for c in chunks)
        completed = {}
        for task_id, indices in enumerate(chunks):
            self._check_cancelled(cancel_event, deadline)
            for attempt in range(config.max_task_retries + 1):
                message = run_scenario_batch(task_id, params, indices, base_seed,
                                             config.antithetic, config.retain_cash_flows)
                if isinstance(message, TaskComplete):
                    break
                logger.warning(f"[MONTE CARLO] Task {task_id} failed (attempt {attempt + 1}): "
                               f"{message.error_type}: {message.message}")
            if isinstance(message, TaskError):
                raise self._worker_failure(message)
            self._task_done(message, completed, total, progress)
        return completed

    def _run_pool(self, params, chunks, base_seed, progress, cancel_event, deadline):
        """
        Dispatch chunks to the worker pool, at most ``num_workers`` at a time so
        every submitted task is executing and its timeout clock is meaningful.

        A timeout or a broken pool taints the pool: its workers are terminated,
        a fresh pool replaces it and the tasks that were in flight are queued
        again. Only the failed task spends one of its retries.
        """
        config = self.config
        total = sum(len(c) for c in chunks)
        owns_executor = self._executor is None
        executor = self._executor or ProcessPoolExecutor(max_workers=config.num_workers)

        queue = deque((task_id, indices, 0) for task_id, indices in enumerate(chunks))
        # future -> (task_id, indices, attempt, submitted_at)
        pending = {}
        completed = {}
        finished_cleanly = False
        try:
            while queue or pending:
                self._check_cancelled(cancel_event, deadline)
                while queue and len(pending) < config.num_workers:
                    task_id, indices, attempt = queue.popleft()
                    future = executor.submit(run_scenario_batch, task_id, params, indices, base_seed,
                                             config.antithetic, config.retain_cash_flows)
                    pending[future] = (task_id, indices, attempt, time.monotonic())

                done, _ = wait(list(pending), timeout=POLL_INTERVAL, return_when=FIRST_COMPLETED)
                now = time.monotonic()
                failed = []
                tainted = False

                for future in done:
                    task_id, indices, attempt, _ = pending.pop(future)
                    try:
                        message = future.result()
                    except BrokenProcessPool as e:
                        tainted = True
                        message = TaskError(task_id, indices, type(e).__name__, str(e), traceback.format_exc())
                    if isinstance(message, TaskError):
                        failed.append((message, attempt))
                    else:
                        self._task_done(message, completed, total, progress)

                if config.task_timeout is not None:
                    for future, (task_id, indices, attempt, submitted_at) in list(pending.items()):
                        if now - submitted_at > config.task_timeout:
                            del pending[future]
                            tainted = True
                            failed.append((TaskError(task_id, indices, 'TimeoutError',
                                                     f"Task exceeded {config.task_timeout}s", ''), attempt))

                if tainted:
                    logger.warning(f"[MONTE CARLO] Restarting worker pool, requeueing {len(pending)} "
                                   f"task(s) in flight")
                    for task_id, indices, attempt, _ in pending.values():
                        queue.appendleft((task_id, indices, attempt))
                    pending.clear()
                    executor = self._replace_pool(executor, owns_executor)

                for message, attempt in failed:
                    if attempt >= config.max_task_retries:
                        raise self._worker_failure(message)
                    logger.warning(f"[MONTE CARLO] Retrying task {message.task_id} "
                                   f"(attempt {attempt + 2}): {message.error_type}: {message.message}")
                    queue.append((message.task_id, message.indices, attempt + 1))
            finished_cleanly = True
        finally:
            if owns_executor:
                if finished_cleanly:
                    executor.shutdown(wait=True)
                else:
                    terminate_pool(executor)
            elif pending:
                # Abandoned tasks must not hold worker slots of the shared pool
                self._replace_pool(executor, owns_executor)
        return completed

    def _replace_pool(self, executor, owns_executor):
        terminate_pool(executor)
        replacement = ProcessPoolExecutor(max_workers=self.config.num_workers)
        if not owns_executor:
            self._executor = replacement
        return replacement


def terminate_pool(executor):
    """Shut a pool down without waiting on tasks that may never return"""
    processes = list((getattr(executor, '_processes', None) or {}).values())
    executor.shutdown(wait=False, cancel_futures=True)
    for process in processes:
        if process.is_alive():
            process.terminate()
