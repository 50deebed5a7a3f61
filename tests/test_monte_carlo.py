import functools
import os
import threading
import time
from dataclasses import replace

import pytest

from retirement_engine.errors import (InvalidParameterError, OrchestrationError, SimulationCancelled,
                                      SimulationRuntimeError, WorkerFailure)
from retirement_engine.messages import TaskComplete, TaskError, TaskProgress
from retirement_engine.monte_carlo import MonteCarloOrchestrator, aggregate_results, run_scenario_batch
from retirement_engine.params import MarketAssumptions
from retirement_engine.results import Phase, ScenarioResult
from retirement_engine.rng import RandomContext
from retirement_engine.scenario import ScenarioSimulator, simulate_scenario


def fake_result(index, ending, success=True, drawdown=0.0, returns=(0.05, 0.05, 0.05, 0.05, 0.05)):
    return ScenarioResult(
        scenario_index=index,
        final_phase=Phase.SUCCESS if success else Phase.DEPLETED,
        ending_balance=ending,
        ending_balance_real=ending,
        depletion_year=None if success else 3,
        depletion_age=None if success else 70,
        balances=(ending, ending),
        ages=(65, 66),
        portfolio_returns=returns,
        retirement_year=0,
        max_drawdown=drawdown,
        ltc_events=(),
        total_taxes=0.0,
        total_shortfall=0.0,
        legacy_met=success,
    )


def stall_first_attempt(marker, task_id, *args):
    """Task 0 hangs on its first attempt; the marker file records that it already did"""
    if task_id == 0:
        try:
            os.close(os.open(marker, os.O_CREAT | os.O_EXCL))
        except FileExistsError:
            pass
        else:
            time.sleep(60)
    return run_scenario_batch(task_id, *args)


def test_aggregate_uses_sort_and_index_percentiles():
    results = [fake_result(i, float(10 - i), success=i < 8) for i in range(10)]
    aggregate = aggregate_results(results, requested=10, aborted=0, base_seed=1)
    assert aggregate.success_probability == pytest.approx(0.8)
    assert aggregate.ending_balance_percentiles == {10: 1.0, 25: 3.0, 50: 5.0, 75: 7.0, 90: 9.0}
    assert aggregate.yearly_balance_percentiles[50] == (5.0, 5.0)
    assert aggregate.median_depletion_age == 70.0


def test_aggregate_downside_risk():
    losses = (-0.2, 0.1, -0.1, 0.05, 0.02)
    results = [fake_result(i, float(10 - i), success=i < 7, drawdown=i / 10.0,
                           returns=losses if i >= 8 else (0.05,) * 5) for i in range(10)]
    aggregate = aggregate_results(results, requested=10, aborted=0, base_seed=1, cvar_confidence=0.75)
    assert aggregate.ending_balance_cvar == pytest.approx(1.5)
    assert aggregate.cvar_confidence == 0.75
    assert aggregate.max_drawdown_percentiles[50] == pytest.approx(0.4)
    assert aggregate.max_drawdown_percentiles[90] == pytest.approx(0.8)
    # Three failures, two of them with two early losses
    assert aggregate.sequence_risk_score == pytest.approx(2 / 3)


def test_aggregate_is_read_only():
    aggregate = aggregate_results([fake_result(0, 1.0)], requested=1, aborted=0, base_seed=1)
    with pytest.raises(TypeError):
        aggregate.ending_balance_percentiles[50] = 0.0
    with pytest.raises(TypeError):
        aggregate.yearly_balance_percentiles[50] = ()


def test_aggregate_requires_completed_scenarios():
    with pytest.raises(OrchestrationError):
        aggregate_results([], requested=10, aborted=10, base_seed=1)


def test_identical_seeds_give_identical_aggregates(single_params, fast_config):
    orchestrator = MonteCarloOrchestrator(fast_config)
    a = orchestrator.run(single_params)
    b = orchestrator.run(single_params)
    assert a.success_probability == b.success_probability
    assert a.ending_balance_percentiles == b.ending_balance_percentiles
    assert a.yearly_balance_percentiles == b.yearly_balance_percentiles
    assert [s.balances for s in a.scenarios] == [s.balances for s in b.scenarios]
    assert a.base_seed == 42


def test_scenario_streams_depend_only_on_seed_and_index(single_params, fast_config):
    aggregate = MonteCarloOrchestrator(fast_config).run(single_params)
    assert [s.scenario_index for s in aggregate.scenarios] == list(range(40))
    single = simulate_scenario(single_params, RandomContext.for_scenario(42, 17))
    assert aggregate.scenarios[17].balances == single.balances


def test_success_non_increasing_in_spending(single_params, fast_config):
    orchestrator = MonteCarloOrchestrator(fast_config)
    rates = [orchestrator.run(single_params.with_spending(spend)).success_probability
             for spend in (30_000, 60_000, 90_000, 150_000)]
    assert all(later <= earlier for earlier, later in zip(rates, rates[1:]))
    assert rates[0] > rates[-1]


def test_invalid_parameters_rejected_before_running(single_params, fast_config):
    params = replace(single_params, primary=replace(single_params.primary, claim_age=75))
    with pytest.raises(InvalidParameterError):
        MonteCarloOrchestrator(fast_config).run(params)


def test_antithetic_pairs_mirror_the_market(single_params, fast_config):
    fast_config.antithetic = True
    aggregate = MonteCarloOrchestrator(fast_config).run(single_params)
    twin = simulate_scenario(single_params, RandomContext(seed=42, scenario_index=1, mirrored=True))
    assert aggregate.scenarios[1].balances == twin.balances
    with pytest.raises(InvalidParameterError):
        MonteCarloOrchestrator(fast_config).run(single_params, num_scenarios=39)


def test_antithetic_rejected_for_bootstrap(single_params, fast_config):
    fast_config.antithetic = True
    market = MarketAssumptions(distribution='bootstrap', history_returns=(0.1, -0.05, 0.07, 0.02, 0.12),
                               history_inflation=(0.02, 0.03, 0.01, 0.02, 0.025), block_length_years=2)
    with pytest.raises(InvalidParameterError, match='bootstrap'):
        MonteCarloOrchestrator(fast_config).run(replace(single_params, market=market))


def test_aborted_scenarios_tolerated_up_to_limit(single_params, fast_config, monkeypatch):
    original = ScenarioSimulator.run

    def flaky(self, context):
        if context.scenario_index in (3, 11):
            raise SimulationRuntimeError('nan', scenario_index=context.scenario_index)
        return original(self, context)

    monkeypatch.setattr(ScenarioSimulator, 'run', flaky)
    aggregate = MonteCarloOrchestrator(fast_config).run(single_params)
    assert aggregate.completed_scenarios == 38
    assert aggregate.aborted_scenarios == 2
    assert 3 not in [s.scenario_index for s in aggregate.scenarios]


def test_too_many_aborted_scenarios_fail_the_run(single_params, fast_config, monkeypatch):
    def always_nan(self, context):
        raise SimulationRuntimeError('nan', scenario_index=context.scenario_index)

    monkeypatch.setattr(ScenarioSimulator, 'run', always_nan)
    with pytest.raises(OrchestrationError, match='aborted'):
        MonteCarloOrchestrator(fast_config).run(single_params)


def test_task_crash_becomes_worker_failure_after_retries(single_params, fast_config, monkeypatch):
    def crash(self, context):
        raise ValueError('boom')

    monkeypatch.setattr(ScenarioSimulator, 'run', crash)
    with pytest.raises(WorkerFailure) as excinfo:
        MonteCarloOrchestrator(fast_config).run(single_params)
    assert excinfo.value.task_id == 0
    assert excinfo.value.indices == tuple(range(10))
    assert 'ValueError' in excinfo.value.remote_traceback


def test_crashed_task_is_retried(single_params, fast_config, monkeypatch):
    original = ScenarioSimulator.run
    calls = {'failed': False}

    def crash_once(self, context):
        if not calls['failed']:
            calls['failed'] = True
            raise ValueError('transient')
        return original(self, context)

    monkeypatch.setattr(ScenarioSimulator, 'run', crash_once)
    aggregate = MonteCarloOrchestrator(fast_config).run(single_params)
    assert aggregate.completed_scenarios == 40


def test_batch_reports_errors_as_messages(single_params):
    bad = replace(single_params, market=MarketAssumptions(correlations=((1.0, 2.0, 0.0),
                                                                        (2.0, 1.0, 0.0),
                                                                        (0.0, 0.0, 1.0))))
    message = run_scenario_batch(4, bad, (0, 1), base_seed=1)
    assert isinstance(message, TaskError)
    assert message.task_id == 4 and message.indices == (0, 1)
    assert message.error_type == 'InvalidParameterError'

    ok = run_scenario_batch(5, single_params, (2, 3), base_seed=1)
    assert isinstance(ok, TaskComplete)
    assert [r.scenario_index for r in ok.results] == [2, 3]


def test_progress_messages(single_params, fast_config):
    messages = []
    MonteCarloOrchestrator(fast_config, on_message=messages.append).run(single_params)
    assert len(messages) == 4
    assert all(isinstance(m, TaskProgress) for m in messages)
    assert messages[-1].completed_scenarios == 40
    assert messages[-1].fraction == 1.0


def test_cancellation_and_deadline(single_params, fast_config):
    cancel = threading.Event()
    cancel.set()
    orchestrator = MonteCarloOrchestrator(fast_config)
    with pytest.raises(SimulationCancelled):
        orchestrator.run(single_params, cancel_event=cancel)
    with pytest.raises(SimulationCancelled):
        orchestrator.run(single_params, deadline=time.monotonic() - 1.0)


def test_worker_pool_matches_inline_run(single_params, fast_config):
    inline = MonteCarloOrchestrator(fast_config).run(single_params)

    fast_config.num_workers = 2
    fast_config.inline_threshold = 0
    with MonteCarloOrchestrator(fast_config) as orchestrator:
        pooled = orchestrator.run(single_params)
        pooled_again = orchestrator.run(single_params)

    assert pooled.success_probability == inline.success_probability
    assert pooled.yearly_balance_percentiles == inline.yearly_balance_percentiles
    assert [s.balances for s in pooled.scenarios] == [s.balances for s in inline.scenarios]
    assert pooled_again.ending_balance_percentiles == pooled.ending_balance_percentiles


def test_hung_task_is_terminated_and_retried(single_params, fast_config, tmp_path, monkeypatch):
    inline = MonteCarloOrchestrator(fast_config).run(single_params)

    fast_config.num_workers = 2
    fast_config.inline_threshold = 0
    fast_config.task_timeout = 5.0
    monkeypatch.setattr('retirement_engine.monte_carlo.run_scenario_batch',
                        functools.partial(stall_first_attempt, str(tmp_path / 'stalled')))

    start = time.monotonic()
    with MonteCarloOrchestrator(fast_config) as orchestrator:
        pooled = orchestrator.run(single_params)
        # The replacement pool has every worker slot free
        again = orchestrator.run(single_params)
    elapsed = time.monotonic() - start

    assert elapsed < 40.0
    assert os.path.exists(tmp_path / 'stalled')
    assert pooled.completed_scenarios == 40
    assert [s.balances for s in pooled.scenarios] == [s.balances for s in inline.scenarios]
    assert again.ending_balance_percentiles == pooled.ending_balance_percentiles


def test_hung_task_fails_the_run_once_retries_are_spent(single_params, fast_config, tmp_path, monkeypatch):
    fast_config.num_workers = 2
    fast_config.inline_threshold = 0
    fast_config.task_timeout = 5.0
    fast_config.max_task_retries = 0
    monkeypatch.setattr('retirement_engine.monte_carlo.run_scenario_batch',
                        functools.partial(stall_first_attempt, str(tmp_path / 'stalled')))

    start = time.monotonic()
    with pytest.raises(WorkerFailure, match='TimeoutError') as excinfo:
        MonteCarloOrchestrator(fast_config).run(single_params)
    assert time.monotonic() - start < 40.0
    assert excinfo.value.task_id == 0
