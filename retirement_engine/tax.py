"""
Tax Module

Bracket approximation of federal income tax for withdrawal gross-ups. Bracket
thresholds and the standard deduction are 2024 figures indexed by the
scenario's cumulative inflation; Social Security taxability thresholds are
statutory and not indexed. Medicare IRMAA surcharges use the 2024 Part B
premium table, indexed the same way.
"""

from dataclasses import dataclass

INF = float('inf')
BRACKET_YEAR = 2024

FEDERAL_BRACKETS = {
    'single': ((11_600, 0.10), (47_150, 0.12), (100_525, 0.22), (191_950, 0.24),
               (243_725, 0.32), (609_350, 0.35), (INF, 0.37)),
    'married': ((23_200, 0.10), (94_300, 0.12), (201_050, 0.22), (383_900, 0.24),
                (487_450, 0.32), (731_200, 0.35), (INF, 0.37)),
}
LTCG_BRACKETS = {
    'single': ((47_025, 0.0), (518_900, 0.15), (INF, 0.20)),
    'married': ((94_050, 0.0), (583_750, 0.15), (INF, 0.20)),
}
STANDARD_DEDUCTION = {'single': 14_600, 'married': 29_200}
SS_PROVISIONAL_THRESHOLDS = {'single': (25_000, 34_000), 'married': (32_000, 44_000)}

# Medicare Part B IRMAA: (MAGI upper bound, total monthly Part B premium)
IRMAA_BASE_PREMIUM = 174.70
IRMAA_BRACKETS = {
    'single': ((103_000, 174.70), (129_000, 244.60), (161_000, 349.40), (193_000, 454.20),
               (500_000, 559.00), (INF, 594.00)),
    'married': ((206_000, 174.70), (258_000, 244.60), (322_000, 349.40), (386_000, 454.20),
                (750_000, 559.00), (INF, 594.00)),
}
MEDICARE_AGE = 65


@dataclass(frozen=True)
class TaxBreakdown:
    ordinary: float
    capital_gains: float
    state: float
    taxable_social_security: float
    magi: float                  # AGI before deductions, plus realized gains

    @property
    def total(self):
        return self.ordinary + self.capital_gains + self.state


def ordinary_income_tax(taxable_income, filing_status='single', index=1.0):
    """Progressive tax on ordinary taxable income (after deductions)"""
    tax = 0.0
    lower = 0.0
    for upper, rate in FEDERAL_BRACKETS[filing_status]:
        upper = upper * index
        if taxable_income <= lower:
            break
        tax += (min(taxable_income, upper) - lower) * rate
        lower = upper
    return tax


def capital_gains_tax(gains, ordinary_taxable_income, filing_status='single', index=1.0):
    """Long-term gains stacked on top of ordinary taxable income"""
    if gains <= 0:
        return 0.0
    tax = 0.0
    start = max(0.0, ordinary_taxable_income)
    end = start + gains
    lower = 0.0
    for upper, rate in LTCG_BRACKETS[filing_status]:
        upper = upper * index
        overlap = min(end, upper) - max(start, lower)
        if overlap > 0:
            tax += overlap * rate
        lower = upper
    return tax


def taxable_social_security(benefit, other_income, filing_status='single'):
    """Taxable share of Social Security from provisional income (at most 85%)"""
    if benefit <= 0:
        return 0.0
    first, second = SS_PROVISIONAL_THRESHOLDS[filing_status]
    provisional = other_income + 0.5 * benefit
    if provisional <= first:
        return 0.0
    if provisional <= second:
        return min(0.5 * (provisional - first), 0.5 * benefit)
    return min(0.85 * benefit,
               0.85 * (provisional - second) + min(0.5 * benefit, 0.5 * (second - first)))


def household_tax(ordinary_income, social_security, capital_gains, filing_status='single',
                  index=1.0, state_rate=0.0):
    """
    Total income tax for one year.

    Args:
        ordinary_income: wages, pensions, tax-deferred and non-qualified HSA withdrawals
        social_security: gross benefits received
        capital_gains: realized long-term gains
        index: cumulative inflation since the 2024 bracket year
    """
    taxable_ss = taxable_social_security(social_security, ordinary_income + capital_gains, filing_status)
    agi = ordinary_income + taxable_ss
    deduction = STANDARD_DEDUCTION[filing_status] * index
    ordinary_taxable = max(0.0, agi - deduction)
    unused_deduction = max(0.0, deduction - agi)
    gains_taxable = max(0.0, capital_gains - unused_deduction)

    ordinary = ordinary_income_tax(ordinary_taxable, filing_status, index)
    gains = capital_gains_tax(gains_taxable, ordinary_taxable, filing_status, index)
    state = state_rate * (ordinary_taxable + gains_taxable)
    return TaxBreakdown(ordinary, gains, state, taxable_ss, agi + capital_gains)


def irmaa_surcharge(magi, filing_status='single', index=1.0):
    """
    Annual Medicare Part B surcharge for one beneficiary.

    Premiums and MAGI thresholds are 2024 figures scaled by ``index``. The
    MAGI passed in should be the one from two tax years earlier.
    """
    for upper, premium in IRMAA_BRACKETS[filing_status]:
        if magi < upper * index:
            return (premium - IRMAA_BASE_PREMIUM) * index * 12.0
    return 0.0
