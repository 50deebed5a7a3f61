import threading
from types import SimpleNamespace

import pytest

from retirement_engine.errors import SimulationCancelled
from retirement_engine.monte_carlo import MonteCarloOrchestrator
from retirement_engine.optimizer import ClaimAgeOptimizer
from retirement_engine.params import ClaimingStrategy


class ThresholdOrchestrator:
    """Succeeds with certainty up to a per-strategy spending threshold"""

    def __init__(self, config, threshold, cancel_after=None):
        self.config = config
        self.threshold = threshold
        self.cancel_after = cancel_after
        self.seeds = set()
        self.calls = 0

    def run(self, params, num_scenarios=None, seed=None, cancel_event=None, deadline=None):
        self.calls += 1
        if self.cancel_after is not None and self.calls > self.cancel_after:
            cancel_event.set()
        if cancel_event is not None and cancel_event.is_set():
            raise SimulationCancelled("cancelled")
        self.seeds.add(seed)
        limit = self.threshold(params.claiming_strategy)
        return SimpleNamespace(success_probability=1.0 if params.annual_spending <= limit else 0.0)


def by_claim_age(strategy):
    return 40_000 + 1_000 * (strategy.primary_claim_age - 62)


def test_candidates_single_and_couple(single_params, couple_params, fast_config):
    optimizer = ClaimAgeOptimizer(ThresholdOrchestrator(fast_config, by_claim_age), fast_config)
    singles = optimizer.candidate_strategies(single_params)
    assert [s.primary_claim_age for s in singles] == list(range(62, 71))
    couples = optimizer.candidate_strategies(couple_params)
    assert len(couples) == 81
    assert len(set(couples)) == 81
    assert ClaimingStrategy(62, 70) in couples


def test_binary_search_finds_best_strategy(single_params, fast_config):
    orchestrator = ThresholdOrchestrator(fast_config, by_claim_age)
    result = ClaimAgeOptimizer(orchestrator, fast_config).optimize(single_params, seed=7)

    assert result.best.strategy == ClaimingStrategy(70)
    assert 48_000 - fast_config.spend_tolerance <= result.best.sustainable_spend <= 48_000
    assert result.best.converged and result.converged
    low, high = result.best.bracket
    assert high - low <= fast_config.spend_tolerance
    assert len(result.runner_ups) == 8
    spends = [e.sustainable_spend for e in result.evaluations]
    assert spends == sorted(spends, reverse=True)
    # Common random numbers: every trial used the same base seed
    assert orchestrator.seeds == {7}
    assert result.base_seed == 7


def test_upper_bound_expands_while_feasible(single_params, fast_config):
    orchestrator = ThresholdOrchestrator(fast_config, lambda s: 500_000)
    optimizer = ClaimAgeOptimizer(orchestrator, fast_config, claim_ages=(67,))
    evaluation = optimizer.find_sustainable_spend(single_params, ClaimingStrategy(67), seed=1)
    assert evaluation.converged
    assert 500_000 - fast_config.spend_tolerance <= evaluation.sustainable_spend <= 500_000


def test_infeasible_strategy_flagged(single_params, fast_config):
    orchestrator = ThresholdOrchestrator(fast_config, lambda s: 10_000)
    evaluation = ClaimAgeOptimizer(orchestrator, fast_config).find_sustainable_spend(
        single_params, ClaimingStrategy(62), seed=1)
    assert not evaluation.feasible
    assert evaluation.sustainable_spend == 0.0


def test_non_convergence_is_flagged(single_params, fast_config):
    fast_config.max_search_iterations = 3
    orchestrator = ThresholdOrchestrator(fast_config, by_claim_age)
    result = ClaimAgeOptimizer(orchestrator, fast_config, claim_ages=(62, 63)).optimize(single_params, seed=1)
    assert not result.converged
    assert result.best.iterations == 3
    low, high = result.best.bracket
    assert high - low > fast_config.spend_tolerance
    assert result.best.sustainable_spend == low
    assert result.best.sustainable_spend <= by_claim_age(result.best.strategy)


def test_cancellation_returns_best_so_far(single_params, fast_config):
    orchestrator = ThresholdOrchestrator(fast_config, by_claim_age, cancel_after=20)
    result = ClaimAgeOptimizer(orchestrator, fast_config).optimize(
        single_params, cancel_event=threading.Event(), seed=3)
    assert result.cancelled
    assert result.best is not None
    assert result.best.sustainable_spend > 0
    assert len(result.evaluations) == 2


def test_timeout_with_real_orchestrator(single_params, fast_config):
    orchestrator = MonteCarloOrchestrator(fast_config)
    result = ClaimAgeOptimizer(orchestrator, fast_config).optimize(single_params, timeout=0.0)
    assert result.cancelled
    assert result.best is None


def test_optimum_reproduces_target_success(single_params, fast_config):
    fast_config.num_scenarios = 500
    fast_config.success_target = 0.95
    fast_config.spend_search_low = 10_000.0
    fast_config.spend_search_high = 100_000.0
    orchestrator = MonteCarloOrchestrator(fast_config)
    result = ClaimAgeOptimizer(orchestrator, fast_config, claim_ages=(62, 70)).optimize(single_params)

    best = result.best
    assert best.feasible and best.converged
    replay = orchestrator.run(single_params.with_claiming(best.strategy).with_spending(best.sustainable_spend),
                              seed=result.base_seed)
    assert replay.completed_scenarios == 500
    assert replay.success_probability == pytest.approx(best.success_probability)
    assert abs(replay.success_probability - fast_config.success_target) <= 0.01
