"""
Simulation parameter dataclasses.

Every input to the engine is an immutable value built once per request and
shared read-only by all scenarios of a run. ``SimulationParameters.validate``
rejects malformed inputs before any simulation work starts.
"""

import math
from dataclasses import dataclass, field, fields, replace
from typing import Optional, Tuple

from .errors import InvalidParameterError


BUCKET_NAMES = ('cash', 'taxable', 'tax_deferred', 'tax_free', 'hsa')
DISTRIBUTIONS = ('normal', 'student_t', 'jump_diffusion', 'bootstrap')
WITHDRAWAL_STRATEGIES = ('tax_efficient', 'guardrails')
MIN_CLAIM_AGE = 62
MAX_CLAIM_AGE = 70


# =============================================================================
# Assets
# =============================================================================

@dataclass(frozen=True)
class AssetBuckets:
    """Balances keyed by tax treatment."""
    cash: float = 0.0            # Cash equivalents
    taxable: float = 0.0         # Brokerage / capital-gains bucket
    tax_deferred: float = 0.0    # 401(k), traditional IRA
    tax_free: float = 0.0        # Roth
    hsa: float = 0.0             # Health savings account

    @property
    def total(self) -> float:
        return self.cash + self.taxable + self.tax_deferred + self.tax_free + self.hsa

    def as_dict(self):
        return {name: getattr(self, name) for name in BUCKET_NAMES}

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(**{name: float(data.get(name, 0.0)) for name in BUCKET_NAMES})

    def validate(self, label='assets'):
        errors = []
        for name in BUCKET_NAMES:
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                errors.append(f"{label}.{name} must be a non-negative number (got {value})")
        return errors


# =============================================================================
# Household members
# =============================================================================

@dataclass(frozen=True)
class Person:
    """One household member. Money amounts are annual and in today's dollars unless noted."""
    current_age: int
    retirement_age: int
    life_expectancy: int = 93
    claim_age: int = 67                      # Social Security claim age (62-70)
    pia: Optional[float] = None              # Monthly PIA at FRA; derived from earnings when None
    monthly_income: float = 0.0              # Current gross monthly earnings (AIME input)
    years_worked: Optional[int] = None       # Total covered years expected by eligibility
    # (calendar year, covered earnings) pairs; used instead of monthly_income when given
    earnings_history: Optional[Tuple[Tuple[int, float], ...]] = None
    birth_year: Optional[int] = None         # Defaults to start_year - current_age
    annual_income: float = 0.0               # Employment income while still working
    pension: float = 0.0                     # Annual pension, paid from retirement_age
    pension_cola: float = 0.0
    pension_survivor_fraction: float = 0.0   # Share continued to a surviving spouse
    part_time_income: float = 0.0
    part_time_until_age: Optional[int] = None
    contributions: AssetBuckets = field(default_factory=AssetBuckets)

    def validate(self, label):
        errors = []
        if not (0 < self.current_age < self.life_expectancy):
            errors.append(f"{label}.current_age ({self.current_age}) must be positive and below "
                          f"life_expectancy ({self.life_expectancy})")
        if self.retirement_age < 0:
            errors.append(f"{label}.retirement_age must be non-negative")
        if not (MIN_CLAIM_AGE <= self.claim_age <= MAX_CLAIM_AGE):
            errors.append(f"{label}.claim_age ({self.claim_age}) must be between "
                          f"{MIN_CLAIM_AGE} and {MAX_CLAIM_AGE}")
        for name in ('monthly_income', 'annual_income', 'pension', 'part_time_income'):
            if getattr(self, name) < 0:
                errors.append(f"{label}.{name} must be non-negative")
        if self.pia is not None and self.pia < 0:
            errors.append(f"{label}.pia must be non-negative")
        if self.earnings_history is not None and any(e < 0 for _, e in self.earnings_history):
            errors.append(f"{label}.earnings_history amounts must be non-negative")
        if not (0.0 <= self.pension_survivor_fraction <= 1.0):
            errors.append(f"{label}.pension_survivor_fraction must be within [0, 1]")
        errors.extend(self.contributions.validate(f"{label}.contributions"))
        return errors

    @classmethod
    def from_dict(cls, data):
        data = dict(data)
        data['contributions'] = AssetBuckets.from_dict(data.get('contributions'))
        history = data.get('earnings_history')
        if history is not None:
            pairs = history.items() if isinstance(history, dict) else history
            data['earnings_history'] = tuple(sorted((int(year), float(amount)) for year, amount in pairs))
        return cls(**data)


# =============================================================================
# Market, care, tax and withdrawal assumptions
# =============================================================================

@dataclass(frozen=True)
class MarketAssumptions:
    """Annual return and inflation assumptions."""
    asset_classes: Tuple[str, ...] = ('stocks', 'bonds', 'cash')
    expected_returns: Tuple[float, ...] = (0.07, 0.04, 0.025)   # Arithmetic annual means
    volatilities: Tuple[float, ...] = (0.17, 0.06, 0.01)
    correlations: Optional[Tuple[Tuple[float, ...], ...]] = None  # None = uncorrelated
    distribution: str = 'normal'
    t_df: float = 5.0
    jump_probability: float = 0.05
    jump_mean: float = -0.15       # Mean log jump size for the most volatile class
    jump_std: float = 0.10
    inflation_mean: float = 0.025
    inflation_std: float = 0.012
    real_returns: bool = False     # True if expected_returns are real (inflation added back)
    # Historical annual series for the bootstrap distribution
    history_returns: Optional[Tuple[float, ...]] = None
    history_inflation: Optional[Tuple[float, ...]] = None
    block_length_years: int = 5
    block_overlapping: bool = True

    def validate(self):
        errors = []
        n = len(self.asset_classes)
        if len(self.expected_returns) != n or len(self.volatilities) != n:
            errors.append("market.expected_returns and market.volatilities must match asset_classes")
        if any(v < 0 for v in self.volatilities):
            errors.append("market.volatilities must be non-negative")
        if self.correlations is not None:
            if len(self.correlations) != n or any(len(row) != n for row in self.correlations):
                errors.append(f"market.correlations must be a {n}x{n} matrix")
        if self.distribution not in DISTRIBUTIONS:
            errors.append(f"market.distribution must be one of {DISTRIBUTIONS} (got '{self.distribution}')")
        if self.distribution == 'student_t' and self.t_df <= 2.1:
            errors.append(f"market.t_df must exceed 2.1 for finite variance (got {self.t_df})")
        if not (0.0 <= self.jump_probability <= 1.0):
            errors.append("market.jump_probability must be within [0, 1]")
        if self.jump_std < 0 or self.inflation_std < 0:
            errors.append("market.jump_std and market.inflation_std must be non-negative")
        if self.distribution == 'bootstrap':
            if not self.history_returns or not self.history_inflation:
                errors.append("market.history_returns and market.history_inflation are required "
                              "for the bootstrap distribution")
            elif len(self.history_returns) != len(self.history_inflation):
                errors.append("market.history_returns and market.history_inflation must align")
            if self.block_length_years < 1:
                errors.append("market.block_length_years must be at least 1")
        return errors

    @classmethod
    def from_dict(cls, data):
        data = dict(data or {})
        for key in ('asset_classes', 'expected_returns', 'volatilities',
                    'history_returns', 'history_inflation'):
            if data.get(key) is not None:
                data[key] = tuple(data[key])
        if data.get('correlations') is not None:
            data['correlations'] = tuple(tuple(row) for row in data['correlations'])
        return cls(**data)


@dataclass(frozen=True)
class LTCAssumptions:
    """Long-term-care incidence, duration and cost assumptions."""
    enabled: bool = True
    onset_age: int = 75
    # (lower age of band, annual probability of a new event)
    incidence: Tuple[Tuple[int, float], ...] = ((75, 0.018), (80, 0.035), (85, 0.065),
                                                (90, 0.095), (95, 0.12))
    duration_mean: float = 2.0        # Years, log-normal
    duration_std: float = 1.5
    min_duration: float = 0.5
    max_duration: float = 5.0
    base_annual_cost: float = 75_000.0
    cost_inflation: float = 0.035
    # (care type, probability, cost multiplier)
    care_mix: Tuple[Tuple[str, float, float], ...] = (('home_care', 0.55, 0.78),
                                                      ('assisted_living', 0.30, 0.71),
                                                      ('nursing_home', 0.15, 1.28))

    def validate(self):
        errors = []
        probabilities = [p for _, p in self.incidence]
        if any(not (0.0 <= p <= 1.0) for p in probabilities):
            errors.append("ltc.incidence probabilities must be within [0, 1]")
        if abs(sum(p for _, p, _ in self.care_mix) - 1.0) > 1e-6:
            errors.append("ltc.care_mix probabilities must sum to 1")
        if not (0 < self.min_duration <= self.max_duration):
            errors.append("ltc.min_duration must be positive and not exceed max_duration")
        if self.base_annual_cost < 0:
            errors.append("ltc.base_annual_cost must be non-negative")
        return errors

    @classmethod
    def from_dict(cls, data):
        data = dict(data or {})
        if 'incidence' in data:
            data['incidence'] = tuple((int(a), float(p)) for a, p in data['incidence'])
        if 'care_mix' in data:
            data['care_mix'] = tuple((str(n), float(p), float(m)) for n, p, m in data['care_mix'])
        return cls(**data)


@dataclass(frozen=True)
class LTCInsurancePolicy:
    """Policy covering every household member."""
    daily_benefit: float = 200.0
    elimination_days: int = 90
    benefit_years: float = 3.0
    annual_premium: float = 3_000.0   # Per insured person, level nominal premium
    inflation_rider: float = 0.03     # Compound growth of the daily benefit; 0 = none

    def validate(self):
        errors = []
        if self.daily_benefit < 0 or self.annual_premium < 0:
            errors.append("ltc_insurance.daily_benefit and annual_premium must be non-negative")
        if self.elimination_days < 0 or self.benefit_years <= 0:
            errors.append("ltc_insurance.elimination_days must be >= 0 and benefit_years > 0")
        return errors


@dataclass(frozen=True)
class TaxAssumptions:
    filing_status: Optional[str] = None     # None = married while both alive, else single
    taxable_gain_fraction: float = 0.5      # Share of a taxable-bucket sale that is gain
    state_rate: float = 0.0

    def validate(self):
        errors = []
        if self.filing_status not in (None, 'single', 'married'):
            errors.append("tax.filing_status must be 'single', 'married' or null")
        if not (0.0 <= self.taxable_gain_fraction <= 1.0):
            errors.append("tax.taxable_gain_fraction must be within [0, 1]")
        if not (0.0 <= self.state_rate < 1.0):
            errors.append("tax.state_rate must be within [0, 1)")
        return errors


@dataclass(frozen=True)
class WithdrawalPolicy:
    strategy: str = 'tax_efficient'
    guardrail_band: float = 0.20          # +/- band around the initial withdrawal rate
    guardrail_adjustment: float = 0.10    # Spending change when a guardrail is crossed
    max_cut: float = 0.30                 # Spending multiplier floor = 1 - max_cut
    max_raise: float = 0.30
    guardrail_min_remaining_years: int = 15
    rmd_age: Optional[int] = None         # Override of the birth-year RMD age

    def validate(self):
        errors = []
        if self.strategy not in WITHDRAWAL_STRATEGIES:
            errors.append(f"withdrawal.strategy must be one of {WITHDRAWAL_STRATEGIES}")
        if not (0.0 < self.guardrail_band < 1.0) or not (0.0 < self.guardrail_adjustment < 1.0):
            errors.append("withdrawal.guardrail_band and guardrail_adjustment must be within (0, 1)")
        if not (0.0 <= self.max_cut < 1.0) or self.max_raise < 0:
            errors.append("withdrawal.max_cut must be within [0, 1) and max_raise non-negative")
        return errors


@dataclass(frozen=True)
class ExpenseItem:
    """Extra spending active between two ages (end exclusive) of the primary, or of the spouse once widowed."""
    name: str
    annual_amount: float
    start_age: int
    end_age: Optional[int] = None
    qualifying_medical: bool = False

    def active(self, age):
        return age >= self.start_age and (self.end_age is None or age < self.end_age)


@dataclass(frozen=True)
class ClaimingStrategy:
    """Candidate Social Security claim ages for the household."""
    primary_claim_age: int
    spouse_claim_age: Optional[int] = None

    def __str__(self):
        if self.spouse_claim_age is None:
            return f"claim@{self.primary_claim_age}"
        return f"claim@{self.primary_claim_age}/{self.spouse_claim_age}"


# =============================================================================
# Top-level parameters
# =============================================================================

@dataclass(frozen=True)
class SimulationParameters:
    """Fully populated engine input. Spending amounts are annual, today's dollars."""
    primary: Person
    assets: AssetBuckets
    spouse: Optional[Person] = None
    allocation: Tuple[float, ...] = (0.60, 0.35, 0.05)
    market: MarketAssumptions = field(default_factory=MarketAssumptions)
    annual_spending: float = 60_000.0
    healthcare_spending: float = 0.0          # Qualifying medical costs (HSA eligible)
    expenses: Tuple[ExpenseItem, ...] = ()
    survivor_expense_ratio: float = 0.75      # Spending multiplier once one spouse has died
    ltc: LTCAssumptions = field(default_factory=LTCAssumptions)
    ltc_insurance: Optional[LTCInsurancePolicy] = None
    legacy_goal: float = 0.0
    tax: TaxAssumptions = field(default_factory=TaxAssumptions)
    withdrawal: WithdrawalPolicy = field(default_factory=WithdrawalPolicy)
    cola_rate: float = 0.025                  # Social Security COLA
    start_year: int = 2025

    @property
    def has_spouse(self) -> bool:
        return self.spouse is not None

    @property
    def has_ltc_insurance(self) -> bool:
        return self.ltc_insurance is not None

    @property
    def claiming_strategy(self) -> ClaimingStrategy:
        return ClaimingStrategy(self.primary.claim_age,
                                self.spouse.claim_age if self.spouse is not None else None)

    def with_spending(self, annual_spending):
        return replace(self, annual_spending=float(annual_spending))

    def with_claiming(self, strategy: ClaimingStrategy):
        primary = replace(self.primary, claim_age=strategy.primary_claim_age)
        spouse = self.spouse
        if spouse is not None and strategy.spouse_claim_age is not None:
            spouse = replace(spouse, claim_age=strategy.spouse_claim_age)
        return replace(self, primary=primary, spouse=spouse)

    def validate(self):
        """Validate parameters, raising InvalidParameterError with every problem found."""
        errors = []
        errors.extend(self.primary.validate('primary'))
        if self.spouse is not None:
            errors.extend(self.spouse.validate('spouse'))
        errors.extend(self.assets.validate('assets'))
        errors.extend(self.market.validate())
        if len(self.allocation) != len(self.market.asset_classes):
            errors.append(f"allocation has {len(self.allocation)} weights for "
                          f"{len(self.market.asset_classes)} asset classes")
        if any(w < 0 for w in self.allocation):
            errors.append("allocation weights must be non-negative")
        if abs(sum(self.allocation) - 1.0) > 1e-6:
            errors.append(f"allocation weights must sum to 1 (got {sum(self.allocation):.6f})")
        if self.annual_spending < 0 or self.healthcare_spending < 0:
            errors.append("annual_spending and healthcare_spending must be non-negative")
        if any(item.annual_amount < 0 for item in self.expenses):
            errors.append("expense amounts must be non-negative")
        if not (0.0 < self.survivor_expense_ratio <= 1.0):
            errors.append("survivor_expense_ratio must be within (0, 1]")
        if self.legacy_goal < 0:
            errors.append("legacy_goal must be non-negative")
        errors.extend(self.ltc.validate())
        if self.ltc_insurance is not None:
            errors.extend(self.ltc_insurance.validate())
        errors.extend(self.tax.validate())
        errors.extend(self.withdrawal.validate())
        if errors:
            raise InvalidParameterError(errors)

    @classmethod
    def from_dict(cls, data):
        """Build parameters from a plain mapping using the same field names (e.g. parsed JSON)."""
        data = dict(data)
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise InvalidParameterError([f"Unknown parameter '{key}'" for key in sorted(unknown)])
        if 'primary' not in data or 'assets' not in data:
            raise InvalidParameterError("'primary' and 'assets' are required")
        try:
            data['primary'] = Person.from_dict(data['primary'])
            if data.get('spouse') is not None:
                data['spouse'] = Person.from_dict(data['spouse'])
            data['assets'] = AssetBuckets.from_dict(data['assets'])
            if 'allocation' in data:
                data['allocation'] = tuple(float(w) for w in data['allocation'])
            data['market'] = MarketAssumptions.from_dict(data.get('market'))
            data['expenses'] = tuple(ExpenseItem(**item) for item in data.get('expenses', ()))
            data['ltc'] = LTCAssumptions.from_dict(data.get('ltc'))
            if data.get('ltc_insurance') is not None:
                data['ltc_insurance'] = LTCInsurancePolicy(**data['ltc_insurance'])
            data['tax'] = TaxAssumptions(**(data.get('tax') or {}))
            data['withdrawal'] = WithdrawalPolicy(**(data.get('withdrawal') or {}))
        except TypeError as e:
            raise InvalidParameterError(f"Malformed parameter document: {e}") from e
        return cls(**data)
