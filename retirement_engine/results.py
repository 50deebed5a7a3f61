"""
Result records produced by the simulator and the Monte Carlo reduction.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from .params import AssetBuckets


class Phase(Enum):
    ACCUMULATION = 'accumulation'
    DECUMULATION = 'decumulation'
    SUCCESS = 'success'
    DEPLETED = 'depleted'


@dataclass(frozen=True)
class YearlyCashFlowRecord:
    """Snapshot of one simulated year. Amounts are nominal dollars of that year."""
    year_index: int
    calendar_year: int
    primary_age: int
    spouse_age: Optional[int]
    phase: Phase
    # Income
    social_security: float
    pension: float
    part_time_income: float
    employment_income: float
    contributions: float
    # Spending
    spending: float
    healthcare: float
    irmaa: float
    ltc_gross_cost: float
    ltc_insurance_offset: float
    ltc_premium: float
    # Withdrawals
    withdrawals: AssetBuckets
    rmd: float
    taxes: float
    reinvested: float
    shortfall: float
    # Market
    portfolio_return: float
    inflation: float
    cumulative_inflation: float
    # State
    ending: AssetBuckets
    depleted: bool

    @property
    def total_balance(self):
        return self.ending.total

    @property
    def guaranteed_income(self):
        return self.social_security + self.pension + self.part_time_income + self.employment_income

    def as_row(self):
        """Flat dict for DataFrame export"""
        row = {
            'YEAR_INDEX': self.year_index,
            'CALENDAR_YEAR': self.calendar_year,
            'PRIMARY_AGE': self.primary_age,
            'SPOUSE_AGE': self.spouse_age,
            'PHASE': self.phase.value,
            'SOCIAL_SECURITY': self.social_security,
            'PENSION': self.pension,
            'PART_TIME_INCOME': self.part_time_income,
            'EMPLOYMENT_INCOME': self.employment_income,
            'CONTRIBUTIONS': self.contributions,
            'SPENDING': self.spending,
            'HEALTHCARE': self.healthcare,
            'IRMAA': self.irmaa,
            'LTC_GROSS_COST': self.ltc_gross_cost,
            'LTC_INSURANCE_OFFSET': self.ltc_insurance_offset,
            'LTC_PREMIUM': self.ltc_premium,
            'RMD': self.rmd,
            'TAXES': self.taxes,
            'REINVESTED': self.reinvested,
            'SHORTFALL': self.shortfall,
            'PORTFOLIO_RETURN': self.portfolio_return,
            'INFLATION': self.inflation,
            'CUMULATIVE_INFLATION': self.cumulative_inflation,
            'TOTAL_BALANCE': self.total_balance,
            'DEPLETED': self.depleted,
        }
        for name, value in self.withdrawals.as_dict().items():
            row[f'WITHDRAWAL_{name.upper()}'] = value
        for name, value in self.ending.as_dict().items():
            row[f'BALANCE_{name.upper()}'] = value
        return row


@dataclass(frozen=True)
class ScenarioResult:
    scenario_index: int
    final_phase: Phase
    ending_balance: float              # nominal
    ending_balance_real: float         # today's dollars
    depletion_year: Optional[int]      # year index of first unmet need
    depletion_age: Optional[int]       # age of the living account owner in that year
    balances: Tuple[float, ...]        # nominal end-of-year totals
    ages: Tuple[int, ...]              # primary age per year
    portfolio_returns: Tuple[float, ...]
    retirement_year: Optional[int]     # first decumulation year index
    max_drawdown: float                # largest peak-to-trough fall of the balance path, 0-1
    ltc_events: tuple
    total_taxes: float
    total_shortfall: float
    legacy_met: bool
    cash_flows: Optional[Tuple[YearlyCashFlowRecord, ...]] = None

    @property
    def success(self):
        return self.final_phase is Phase.SUCCESS


@dataclass(frozen=True)
class AggregateResult:
    """
    Pure reduction over the completed scenarios of one run, in scenario order.

    Percentile ladders are read-only mappings; the result is never mutated
    after construction.
    """
    success_probability: float
    legacy_success_probability: float
    requested_scenarios: int
    completed_scenarios: int
    aborted_scenarios: int
    ending_balance_percentiles: Mapping[int, float]
    yearly_balance_percentiles: Mapping[int, Tuple[float, ...]]
    ages: Tuple[int, ...]
    median_depletion_age: Optional[float]
    ltc_event_rate: float
    mean_total_taxes: float
    ending_balance_cvar: float         # mean of the worst (1 - cvar_confidence) ending balances
    cvar_confidence: float
    max_drawdown_percentiles: Mapping[int, float]
    sequence_risk_score: float         # share of failures with early-retirement losses
    base_seed: int
    scenarios: Tuple[ScenarioResult, ...] = ()

    def __post_init__(self):
        for name in ('ending_balance_percentiles', 'yearly_balance_percentiles', 'max_drawdown_percentiles'):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))
