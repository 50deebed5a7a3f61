"""
Withdrawal Strategy Module

Decides how much to take from each tax bucket in a decumulation year, grossed up
for the taxes the withdrawals themselves trigger, and enforces Required Minimum
Distributions.
"""

from dataclasses import dataclass

import logging

from .params import BUCKET_NAMES
from .tax import household_tax

logger = logging.getLogger(__name__)

# Order used once qualifying medical costs have been paid from the HSA
WITHDRAWAL_ORDER = ('cash', 'taxable', 'tax_deferred', 'tax_free', 'hsa')
MAX_TAX_ITERATIONS = 50
TAX_TOLERANCE = 0.01
SHORTFALL_TOLERANCE = 1.0

# IRS Uniform Lifetime Table (2022+)
UNIFORM_LIFETIME_TABLE = {
    70: 29.1, 71: 28.2, 72: 27.4, 73: 26.5, 74: 25.5, 75: 24.6, 76: 23.7, 77: 22.9,
    78: 22.0, 79: 21.1, 80: 20.2, 81: 19.4, 82: 18.5, 83: 17.7, 84: 16.8, 85: 16.0,
    86: 15.2, 87: 14.4, 88: 13.7, 89: 12.9, 90: 12.2, 91: 11.5, 92: 10.8, 93: 10.1,
    94: 9.5, 95: 8.9, 96: 8.4, 97: 7.8, 98: 7.3, 99: 6.8, 100: 6.4, 101: 6.0,
    102: 5.6, 103: 5.2, 104: 4.9, 105: 4.6, 106: 4.3, 107: 4.1, 108: 3.9, 109: 3.7,
    110: 3.5, 111: 3.4, 112: 3.3, 113: 3.1, 114: 3.0, 115: 2.9, 116: 2.8, 117: 2.7,
    118: 2.5, 119: 2.3, 120: 2.0,
}


def rmd_start_age(birth_year):
    """SECURE 2.0 RMD age: 72 before 1951, 73 for 1951-1959, 75 from 1960"""
    if birth_year < 1951:
        return 72
    if birth_year < 1960:
        return 73
    return 75


def required_minimum_distribution(balance, age, start_age=73):
    if age < start_age or balance <= 0:
        return 0.0
    divisor = UNIFORM_LIFETIME_TABLE.get(min(age, 120), UNIFORM_LIFETIME_TABLE[70])
    return balance / divisor


@dataclass(frozen=True)
class WithdrawalOutcome:
    withdrawals: dict          # bucket -> gross amount withdrawn
    hsa_qualified: float       # part of the HSA withdrawal used for qualifying costs
    rmd: float
    taxes: object              # TaxBreakdown
    shortfall: float
    reinvested: float          # surplus cash moved into the taxable bucket
    balances: dict             # bucket balances after the year's flows

    @property
    def depleted(self):
        return self.shortfall > SHORTFALL_TOLERANCE


class WithdrawalStrategy:
    """
    Tax-aware withdrawal sequencing.

    Order of sources for a year's cash need:
      1. the RMD, which is always taken from the tax-deferred bucket
      2. HSA for qualifying medical and LTC costs
      3. cash -> taxable -> tax-deferred -> tax-free (Roth) -> HSA (non-qualified)

    The gross amount is solved by fixed-point iteration on the year's total
    tax, so capital-gains and ordinary-income taxes on the withdrawals are
    themselves funded. Surplus cash (e.g. an RMD above need) is reinvested in
    the taxable bucket; unmet need is reported as a shortfall.
    """

    def __init__(self, policy, tax_assumptions):
        self.policy = policy
        self.tax_assumptions = tax_assumptions

    def adjust_spending(self, spending, portfolio_total, guaranteed_income, remaining_years,
                        prior_real_return):
        """Spending actually targeted this year; the base strategy never adjusts"""
        return spending

    def _plan(self, balances, cash_needed, qualifying_medical, rmd):
        remaining = dict(balances)
        withdrawals = {name: 0.0 for name in BUCKET_NAMES}

        rmd_taken = min(rmd, remaining['tax_deferred'])
        withdrawals['tax_deferred'] += rmd_taken
        remaining['tax_deferred'] -= rmd_taken
        still_needed = cash_needed - rmd_taken

        hsa_qualified = min(qualifying_medical, remaining['hsa'], max(0.0, still_needed))
        withdrawals['hsa'] += hsa_qualified
        remaining['hsa'] -= hsa_qualified
        still_needed -= hsa_qualified

        for bucket in WITHDRAWAL_ORDER:
            if still_needed <= 0:
                break
            take = min(still_needed, remaining[bucket])
            withdrawals[bucket] += take
            remaining[bucket] -= take
            still_needed -= take
        return withdrawals, hsa_qualified, rmd_taken

    def _taxes(self, withdrawals, hsa_qualified, ordinary_income, social_security,
               filing_status, index):
        ordinary = (ordinary_income + withdrawals['tax_deferred']
                    + (withdrawals['hsa'] - hsa_qualified))
        gains = withdrawals['taxable'] * self.tax_assumptions.taxable_gain_fraction
        return household_tax(ordinary, social_security, gains, filing_status, index,
                             self.tax_assumptions.state_rate)

    def execute(self, balances, need, qualifying_medical=0.0, ordinary_income=0.0,
                social_security=0.0, rmd=0.0, filing_status='single', index=1.0):
        """
        Fund one year's spending need.

        Args:
            balances: dict bucket -> balance at the time of withdrawal
            need: total cash spending need (living, healthcare, LTC, premiums)
            qualifying_medical: part of ``need`` that the HSA may pay tax-free
            ordinary_income: taxable guaranteed income (pensions, wages, part-time)
            social_security: gross Social Security received
            rmd: required minimum distribution from the tax-deferred bucket
            index: cumulative inflation used to index tax brackets

        Returns:
            WithdrawalOutcome
        """
        income = ordinary_income + social_security
        empty = {name: 0.0 for name in BUCKET_NAMES}
        taxes = self._taxes(empty, 0.0, ordinary_income, social_security, filing_status, index)
        tax = taxes.total
        withdrawals, hsa_qualified, rmd_taken = empty, 0.0, 0.0

        for _ in range(MAX_TAX_ITERATIONS):
            cash_needed = max(0.0, need + tax - income)
            withdrawals, hsa_qualified, rmd_taken = self._plan(balances, cash_needed,
                                                               qualifying_medical, rmd)
            taxes = self._taxes(withdrawals, hsa_qualified, ordinary_income, social_security,
                                filing_status, index)
            converged = abs(taxes.total - tax) < TAX_TOLERANCE
            tax = taxes.total
            if converged:
                break
        else:
            logger.warning(f"[WITHDRAWAL] Tax gross-up did not converge after {MAX_TAX_ITERATIONS} iterations")

        surplus = income + sum(withdrawals.values()) - tax - need
        shortfall = max(0.0, -surplus)
        reinvested = max(0.0, surplus)

        new_balances = {name: max(0.0, balances[name] - withdrawals[name]) for name in BUCKET_NAMES}
        new_balances['taxable'] += reinvested
        return WithdrawalOutcome(withdrawals, hsa_qualified, rmd_taken, taxes, shortfall,
                                 reinvested, new_balances)


class GuardrailsWithdrawalStrategy(WithdrawalStrategy):
    """
    Guyton-Klinger style guardrails.

    The first decumulation year fixes the initial withdrawal rate (portfolio
    withdrawal / portfolio value). Afterwards, while more than
    ``guardrail_min_remaining_years`` remain, spending is cut by
    ``guardrail_adjustment`` when the current rate rises above the upper
    guardrail and raised by the same step when it falls below the lower one.
    Raises are skipped after a negative real return. The cumulative multiplier
    stays within [1 - max_cut, 1 + max_raise].
    """

    def __init__(self, policy, tax_assumptions):
        super().__init__(policy, tax_assumptions)
        self.initial_rate = None
        self.multiplier = 1.0

    def adjust_spending(self, spending, portfolio_total, guaranteed_income, remaining_years,
                        prior_real_return):
        policy = self.policy
        if portfolio_total <= 0:
            return spending * self.multiplier

        current_rate = max(0.0, spending * self.multiplier - guaranteed_income) / portfolio_total
        if self.initial_rate is None:
            self.initial_rate = current_rate
            return spending * self.multiplier

        if self.initial_rate > 0 and remaining_years > policy.guardrail_min_remaining_years:
            if current_rate > self.initial_rate * (1.0 + policy.guardrail_band):
                self.multiplier *= (1.0 - policy.guardrail_adjustment)
                logger.debug(f"[GUARDRAILS] Capital preservation cut: rate {current_rate:.4f} "
                             f"vs initial {self.initial_rate:.4f}")
            elif (current_rate < self.initial_rate * (1.0 - policy.guardrail_band)
                  and (prior_real_return is None or prior_real_return >= 0)):
                self.multiplier *= (1.0 + policy.guardrail_adjustment)
                logger.debug(f"[GUARDRAILS] Prosperity raise: rate {current_rate:.4f} "
                             f"vs initial {self.initial_rate:.4f}")
        self.multiplier = min(max(self.multiplier, 1.0 - policy.max_cut), 1.0 + policy.max_raise)
        return spending * self.multiplier


def create_withdrawal_strategy(policy, tax_assumptions):
    """Fresh strategy instance for one scenario (guardrails keep per-scenario state)"""
    if policy.strategy == 'guardrails':
        return GuardrailsWithdrawalStrategy(policy, tax_assumptions)
    return WithdrawalStrategy(policy, tax_assumptions)
