"""
Claim-Age Optimizer Module

Searches Social Security claiming strategies and, for each, the highest annual
spending (today's dollars) that keeps the Monte Carlo success probability at
or above the target.
"""

import itertools
import time
from dataclasses import dataclass
from typing import Optional, Tuple

import logging

from .errors import SimulationCancelled
from .params import MAX_CLAIM_AGE, MIN_CLAIM_AGE, ClaimingStrategy
from .rng import random_base_seed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StrategyEvaluation:
    strategy: ClaimingStrategy
    sustainable_spend: float           # last spend meeting the target (bracket low)
    success_probability: float         # success at sustainable_spend
    bracket: Tuple[float, float]       # final [low, high]
    iterations: int
    converged: bool
    feasible: bool = True              # False if even the search floor misses the target
    cancelled: bool = False


@dataclass(frozen=True)
class OptimizationResult:
    best: Optional[StrategyEvaluation]
    runner_ups: Tuple[StrategyEvaluation, ...]
    success_target: float
    base_seed: int
    cancelled: bool = False

    @property
    def converged(self):
        return self.best is not None and self.best.converged

    @property
    def evaluations(self):
        return ((self.best,) if self.best is not None else ()) + self.runner_ups


class ClaimAgeOptimizer:
    """
    Sweeps claiming strategies and binary-searches sustainable spend.

    Every trial of every candidate runs with the same base seed (common random
    numbers), so differences between candidates come from the claiming
    decision rather than from sampling noise.

    Parameters:
    -----------
    orchestrator : MonteCarloOrchestrator
    config : SimulationConfig
    claim_ages : iterable of int, optional
        Candidate ages, default 62-70
    """

    def __init__(self, orchestrator, config=None, claim_ages=None):
        self.orchestrator = orchestrator
        self.config = config or orchestrator.config
        self.claim_ages = tuple(claim_ages) if claim_ages is not None else tuple(
            range(MIN_CLAIM_AGE, MAX_CLAIM_AGE + 1))

    def candidate_strategies(self, params):
        """Single: one strategy per age. Couple: full cross-product of both ages."""
        if params.spouse is None:
            return [ClaimingStrategy(age) for age in self.claim_ages]
        return [ClaimingStrategy(p, s) for p, s in itertools.product(self.claim_ages, repeat=2)]

    def _success_rate(self, params, spend, seed, cache, cancel_event, deadline):
        cache_key = round(spend, 2)
        if cache_key not in cache:
            aggregate = self.orchestrator.run(params.with_spending(spend), seed=seed,
                                              cancel_event=cancel_event, deadline=deadline)
            cache[cache_key] = aggregate.success_probability
        return cache[cache_key]

    def find_sustainable_spend(self, params, strategy, seed, cancel_event=None, deadline=None):
        """
        Binary search of the highest spend whose success probability meets the target.

        Success probability is non-increasing in spend, so the feasible side is
        ``low``. The upper bound is doubled while it is still feasible.
        """
        config = self.config
        target = config.success_target
        candidate = params.with_claiming(strategy)
        cache = {}
        low = config.spend_search_low
        high = config.spend_search_high
        iteration = 0
        low_success = None

        try:
            low_success = self._success_rate(candidate, low, seed, cache, cancel_event, deadline)
            if low_success < target:
                logger.info(f"[OPTIMIZER] {strategy}: even ${low:,.0f} misses the "
                            f"{target * 100:.0f}% target ({low_success * 100:.1f}%)")
                return StrategyEvaluation(strategy, 0.0, low_success, (0.0, low), 0,
                                          converged=True, feasible=False)

            expansions = 0
            high_success = self._success_rate(candidate, high, seed, cache, cancel_event, deadline)
            while high_success >= target and expansions < config.max_spend_expansions:
                low, low_success = high, high_success
                high *= 2.0
                expansions += 1
                high_success = self._success_rate(candidate, high, seed, cache, cancel_event, deadline)
            if high_success >= target:
                # Still feasible at the largest bound searched
                return StrategyEvaluation(strategy, high, high_success, (high, high), iteration,
                                          converged=False)

            while high - low > config.spend_tolerance and iteration < config.max_search_iterations:
                mid = (low + high) / 2.0
                success = self._success_rate(candidate, mid, seed, cache, cancel_event, deadline)
                if success >= target:
                    low, low_success = mid, success
                else:
                    high = mid
                iteration += 1
        except SimulationCancelled:
            logger.warning(f"[OPTIMIZER] {strategy}: search cancelled with bracket "
                           f"[${low:,.0f}, ${high:,.0f}]")
            feasible = low_success is not None and low_success >= target
            return StrategyEvaluation(strategy, low if feasible else 0.0, low_success or 0.0,
                                      (low, high), iteration, converged=False,
                                      feasible=feasible, cancelled=True)

        converged = high - low <= config.spend_tolerance
        if not converged:
            logger.warning(f"[OPTIMIZER] {strategy}: no convergence after {iteration} iterations, "
                           f"bracket [${low:,.0f}, ${high:,.0f}]")
        return StrategyEvaluation(strategy, low, low_success, (low, high), iteration, converged)

    def optimize(self, params, cancel_event=None, timeout=None, seed=None):
        """
        Evaluate every candidate strategy and pick the one with the highest sustainable spend.

        Args:
            params: SimulationParameters (claim ages are overridden per candidate)
            cancel_event: threading.Event; setting it stops the search
            timeout: seconds; the best result so far is returned once exceeded
            seed: base seed shared by all trials (defaults to config.seed)

        Returns:
            OptimizationResult; ``cancelled`` is set when the search stopped early
        """
        params.validate()
        base_seed = seed if seed is not None else self.config.seed
        if base_seed is None:
            base_seed = random_base_seed()
        deadline = time.monotonic() + timeout if timeout is not None else None

        strategies = self.candidate_strategies(params)
        logger.info(f"[OPTIMIZER] Evaluating {len(strategies)} claiming strategies "
                    f"at {self.config.success_target * 100:.0f}% target, seed {base_seed}")

        evaluations = []
        cancelled = False
        for strategy in strategies:
            evaluation = self.find_sustainable_spend(params, strategy, base_seed, cancel_event, deadline)
            if evaluation.cancelled:
                cancelled = True
                if evaluation.feasible:
                    evaluations.append(evaluation)
                break
            evaluations.append(evaluation)
            logger.info(f"[OPTIMIZER] {strategy}: sustainable spend ${evaluation.sustainable_spend:,.0f} "
                        f"({evaluation.success_probability * 100:.1f}% success)")

        ranked = sorted(evaluations, key=lambda e: (e.feasible, e.sustainable_spend), reverse=True)
        best = ranked[0] if ranked else None
        if best is not None:
            logger.info(f"[OPTIMIZER] Best strategy {best.strategy}: ${best.sustainable_spend:,.0f}/yr")
        return OptimizationResult(best, tuple(ranked[1:]), self.config.success_target, base_seed, cancelled)
