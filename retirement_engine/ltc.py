"""
Long-Term Care Event Module

Stochastic per-person LTC event generator with optional insurance offsets.
"""

import math
from dataclasses import dataclass

import numpy as np
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LTCEvent:
    """One care episode. ``inflated_annual_cost`` is in onset-year dollars."""
    owner: str
    onset_age: int
    onset_year: int              # simulation year index of onset
    duration: float              # years of care
    care_type: str
    inflated_annual_cost: float
    insurance_offset: float      # benefit paid in the onset year

    def active(self, year_index):
        elapsed = year_index - self.onset_year
        return 0 <= elapsed < self.duration


@dataclass(frozen=True)
class LTCYearCost:
    gross_cost: float
    insurance_offset: float
    premium: float

    @property
    def out_of_pocket(self):
        return self.gross_cost - self.insurance_offset + self.premium


class LTCEventModel:
    """
    Per person and per year from ``onset_age`` on, fires at most one care event
    with an age-banded probability.

    Every eligible person-year consumes the same three draws (incidence, care
    type, duration) whether or not an event fires, so random streams stay
    aligned across otherwise-identical households.
    """

    def __init__(self, assumptions, policy=None):
        self.assumptions = assumptions
        self.policy = policy
        cv2 = (assumptions.duration_std / assumptions.duration_mean) ** 2
        self._log_sigma = math.sqrt(math.log1p(cv2))
        self._log_mu = math.log(assumptions.duration_mean) - 0.5 * self._log_sigma ** 2
        self._care_types = [name for name, _, _ in assumptions.care_mix]
        self._care_cdf = np.cumsum([p for _, p, _ in assumptions.care_mix])
        self._care_multiplier = {name: m for name, _, m in assumptions.care_mix}

    @property
    def insured(self):
        return self.policy is not None

    def annual_probability(self, age):
        probability = 0.0
        for band_age, band_probability in self.assumptions.incidence:
            if age >= band_age:
                probability = band_probability
        return probability

    def annual_cost(self, care_type, year_index):
        """Annual cost of ``care_type`` inflated to simulation year ``year_index``"""
        a = self.assumptions
        return (a.base_annual_cost * self._care_multiplier[care_type]
                * (1.0 + a.cost_inflation) ** year_index)

    def sample_event(self, owner, age, year_index, rng):
        """Draw this year's event for one person; None if no event fires"""
        if not self.assumptions.enabled or age < self.assumptions.onset_age:
            return None
        u_incidence = rng.random()
        u_care = rng.random()
        z_duration = rng.standard_normal()
        if u_incidence >= self.annual_probability(age):
            return None

        care_index = min(int(np.searchsorted(self._care_cdf, u_care, side='right')),
                         len(self._care_types) - 1)
        care_type = self._care_types[care_index]
        duration = float(np.clip(np.exp(self._log_mu + self._log_sigma * z_duration),
                                 self.assumptions.min_duration, self.assumptions.max_duration))

        inflated_annual_cost = self.annual_cost(care_type, year_index)
        first_year_cost = inflated_annual_cost * min(1.0, duration)
        offset = self.insurance_benefit(first_year_cost, 0, duration, year_index)
        event = LTCEvent(owner, age, year_index, duration, care_type, inflated_annual_cost, offset)
        logger.debug(f"[LTC] {owner} event at age {age}: {care_type}, {duration:.2f} years, "
                     f"${inflated_annual_cost:,.0f}/yr, offset ${offset:,.0f}")
        return event

    def insurance_benefit(self, cost_this_year, years_into_event, duration, year_index):
        """
        Policy benefit for one event year, capped at that year's cost.

        Benefits are paid for care time after the elimination period and within
        ``benefit_years`` of it. The daily benefit grows with the inflation rider.
        """
        if self.policy is None:
            return 0.0
        policy = self.policy
        elimination = policy.elimination_days / 365.0
        window_start = max(years_into_event, elimination)
        window_end = min(years_into_event + 1.0, duration, elimination + policy.benefit_years)
        covered_years = max(0.0, window_end - window_start)
        daily_benefit = policy.daily_benefit * (1.0 + policy.inflation_rider) ** year_index
        return min(cost_this_year, daily_benefit * 365.0 * covered_years)

    def cost_for_year(self, events, year_index, insured_count):
        """
        Gross care cost, insurance offset and premiums for one simulation year.

        Args:
            events: events of the living household members
            insured_count: number of living insured people paying premiums
        """
        gross = 0.0
        offset = 0.0
        for event in events:
            if not event.active(year_index):
                continue
            years_into_event = year_index - event.onset_year
            fraction = min(1.0, event.duration - years_into_event)
            # Computed for every event before the insured/uninsured split
            inflated_annual_cost = self.annual_cost(event.care_type, year_index)
            cost_this_year = inflated_annual_cost * fraction
            gross += cost_this_year
            if self.insured:
                offset += self.insurance_benefit(cost_this_year, years_into_event,
                                                 event.duration, year_index)
        premium = self.policy.annual_premium * insured_count if self.insured else 0.0
        return LTCYearCost(gross, offset, premium)
