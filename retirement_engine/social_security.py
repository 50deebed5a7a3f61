"""
Social Security Benefit Module

Pure functions for AIME, PIA, claim-age adjustments, spousal and survivor
benefits and COLA growth. All amounts are monthly unless a name says otherwise.
Figures follow the 2025 SSA formula; future bend points and the wage base are
escalated with the average wage growth assumption.
"""

import math

BASE_YEAR = 2025
BEND_POINTS_2025 = (1174, 7078)
PIA_RATES = (0.90, 0.32, 0.15)
TAXABLE_WAGE_BASE_2025 = 176_100
WAGE_GROWTH = 0.0354
DEFAULT_COLA = 0.025
COMPUTATION_YEARS = 35
ELIGIBILITY_AGE = 62
INDEXING_AGE = 60
MAX_DELAY_AGE = 70

EARLY_REDUCTION_FIRST_36 = 5.0 / 9.0 / 100.0      # per month
EARLY_REDUCTION_BEYOND_36 = 5.0 / 12.0 / 100.0
SPOUSAL_REDUCTION_FIRST_36 = 25.0 / 36.0 / 100.0
DELAYED_CREDIT_PER_YEAR = 0.08


def fra_for_birth_year(birth_year):
    """Full retirement age in years for a birth year"""
    if birth_year <= 1937:
        return 65.0
    if birth_year <= 1942:
        return 65.0 + (birth_year - 1937) * 2.0 / 12.0
    if birth_year <= 1954:
        return 66.0
    if birth_year <= 1959:
        return 66.0 + (birth_year - 1954) * 2.0 / 12.0
    return 67.0


def escalated_bend_points(eligibility_year, wage_growth=WAGE_GROWTH):
    """PIA bend points for the year a worker turns 62"""
    years = max(0, eligibility_year - BASE_YEAR)
    factor = (1.0 + wage_growth) ** years
    return tuple(round(bp * factor) for bp in BEND_POINTS_2025)


def taxable_wage_base(year, wage_growth=WAGE_GROWTH):
    return TAXABLE_WAGE_BASE_2025 * (1.0 + wage_growth) ** (year - BASE_YEAR)


def calculate_aime(monthly_income, years_worked, current_age, wage_growth=WAGE_GROWTH):
    """
    Simplified AIME from current earnings.

    Current monthly earnings are capped at the taxable wage base, scaled by the
    share of a 35-year computation period actually worked (missing years count
    as zero) and indexed forward to the age-60 wage level.

    Parameters:
    -----------
    monthly_income : float
        Current gross monthly covered earnings
    years_worked : int
        Covered years expected by eligibility
    current_age : int
        Worker's age today

    Returns:
    --------
    aime : float
        Whole-dollar average indexed monthly earnings
    """
    if monthly_income <= 0 or years_worked <= 0:
        return 0.0
    capped_monthly = min(monthly_income, TAXABLE_WAGE_BASE_2025 / 12.0)
    years_factor = min(years_worked, COMPUTATION_YEARS) / COMPUTATION_YEARS
    indexing_factor = (1.0 + wage_growth) ** max(0, INDEXING_AGE - current_age)
    return float(math.floor(capped_monthly * years_factor * indexing_factor))


def calculate_aime_from_history(earnings_by_year, eligibility_year, wage_growth=WAGE_GROWTH):
    """
    AIME from an explicit earnings record.

    Args:
        earnings_by_year: mapping of calendar year -> annual covered earnings
        eligibility_year: year the worker turns 62

    Each year's earnings are capped at that year's wage base and indexed to the
    year the worker turns 60. The highest 35 indexed years are averaged over
    420 months; careers shorter than 35 years are zero-filled.
    """
    index_year = eligibility_year - (ELIGIBILITY_AGE - INDEXING_AGE)
    indexed = []
    for year, earnings in earnings_by_year.items():
        capped = min(max(float(earnings), 0.0), taxable_wage_base(year, wage_growth))
        indexed.append(capped * (1.0 + wage_growth) ** max(0, index_year - year))
    top_years = sorted(indexed, reverse=True)[:COMPUTATION_YEARS]
    top_years += [0.0] * (COMPUTATION_YEARS - len(top_years))
    return float(math.floor(sum(top_years) / (COMPUTATION_YEARS * 12)))


def calculate_pia(aime, eligibility_year=BASE_YEAR, wage_growth=WAGE_GROWTH):
    """Three-tier PIA (90% / 32% / 15%), floored to whole dollars"""
    bp1, bp2 = escalated_bend_points(eligibility_year, wage_growth)
    aime = max(0.0, aime)
    pia = PIA_RATES[0] * min(aime, bp1)
    if aime > bp1:
        pia += PIA_RATES[1] * (min(aime, bp2) - bp1)
    if aime > bp2:
        pia += PIA_RATES[2] * (aime - bp2)
    return float(math.floor(pia))


def claim_age_factor(claim_age, fra=67.0):
    """Multiplier applied to PIA when claiming at ``claim_age``"""
    months = round((claim_age - fra) * 12)
    if months < 0:
        early = -months
        reduction = (min(early, 36) * EARLY_REDUCTION_FIRST_36
                     + max(0, early - 36) * EARLY_REDUCTION_BEYOND_36)
        return 1.0 - reduction
    delayed = min(months, max(0, round((MAX_DELAY_AGE - fra) * 12)))
    return 1.0 + delayed * DELAYED_CREDIT_PER_YEAR / 12.0


def adjust_for_claim_age(pia, claim_age, fra=67.0):
    return pia * claim_age_factor(claim_age, fra)


def spousal_benefit(worker_pia, own_pia, claim_age, fra=67.0):
    """Spousal top-up: max(0, 50% of worker PIA - own PIA), reduced if claimed before FRA"""
    base = max(0.0, 0.5 * worker_pia - own_pia)
    early = max(0, round((fra - claim_age) * 12))
    reduction = (min(early, 36) * SPOUSAL_REDUCTION_FIRST_36
                 + max(0, early - 36) * EARLY_REDUCTION_BEYOND_36)
    return base * (1.0 - reduction)


def survivor_benefit(deceased_benefit, own_benefit):
    return max(deceased_benefit, own_benefit)


def apply_cola(benefit, years_elapsed, cola_rate=DEFAULT_COLA):
    """Compound COLA growth over whole elapsed years"""
    return benefit * (1.0 + cola_rate) ** max(0, years_elapsed)


def pia_for_person(person, start_year=BASE_YEAR, wage_growth=WAGE_GROWTH):
    """
    Monthly PIA in today's dollars for a ``Person``.

    An explicit ``person.pia`` wins, then an earnings history, then current
    earnings. Derived PIAs are computed in eligibility-year dollars and
    deflated back to today with the wage growth assumption.
    """
    if person.pia is not None:
        return float(person.pia)
    years_to_eligibility = max(0, ELIGIBILITY_AGE - person.current_age)
    eligibility_year = start_year + years_to_eligibility
    if person.earnings_history:
        birth_year = person.birth_year or (start_year - person.current_age)
        eligibility_year = birth_year + ELIGIBILITY_AGE
        aime = calculate_aime_from_history(dict(person.earnings_history), eligibility_year, wage_growth)
    elif person.monthly_income > 0:
        years_worked = person.years_worked
        if years_worked is None:
            years_worked = max(0, min(person.retirement_age, ELIGIBILITY_AGE) - 22)
        aime = calculate_aime(person.monthly_income, years_worked, person.current_age, wage_growth)
    else:
        return 0.0
    pia = calculate_pia(aime, eligibility_year, wage_growth)
    return pia / (1.0 + wage_growth) ** years_to_eligibility


class HouseholdBenefits:
    """
    Annual Social Security for a one- or two-person household in today's dollars.

    Own benefits are claim-age adjusted. A spousal top-up is paid once both the
    recipient and the worker have claimed; after a death the survivor keeps the
    larger of their own total and the deceased's adjusted benefit, payable from
    the survivor's own claim age.
    """

    def __init__(self, primary, spouse=None, start_year=BASE_YEAR):
        self.primary = primary
        self.spouse = spouse
        self.start_year = start_year
        self._own = {}
        self._spousal = {}
        self._claim_age = {'primary': primary.claim_age}
        people = {'primary': primary}
        if spouse is not None:
            people['spouse'] = spouse
            self._claim_age['spouse'] = spouse.claim_age

        pias = {}
        for role, person in people.items():
            birth_year = person.birth_year or (start_year - person.current_age)
            fra = fra_for_birth_year(birth_year)
            pias[role] = (pia_for_person(person, start_year), fra)
            self._own[role] = adjust_for_claim_age(pias[role][0], person.claim_age, fra)

        self._spousal = {role: 0.0 for role in people}
        if spouse is not None:
            self._spousal['primary'] = spousal_benefit(pias['spouse'][0], pias['primary'][0],
                                                       primary.claim_age, pias['primary'][1])
            self._spousal['spouse'] = spousal_benefit(pias['primary'][0], pias['spouse'][0],
                                                      spouse.claim_age, pias['spouse'][1])

    def own_monthly(self, role):
        return self._own[role]

    def annual_benefit(self, ages, alive):
        """
        Household benefit for one year, before COLA.

        Args:
            ages: dict role -> age this year
            alive: dict role -> bool
        """
        claimed = {role: alive[role] and ages[role] >= self._claim_age[role] for role in self._own}
        roles = list(self._own)
        living = [role for role in roles if alive[role]]
        monthly = 0.0
        if len(roles) == 2 and len(living) == 1:
            survivor = living[0]
            deceased = roles[0] if survivor == roles[1] else roles[1]
            if claimed[survivor]:
                own_total = self._own[survivor]
                monthly = survivor_benefit(self._own[deceased], own_total)
        else:
            for role in living:
                if not claimed[role]:
                    continue
                monthly += self._own[role]
                other = [r for r in roles if r != role]
                if other and claimed[other[0]]:
                    monthly += self._spousal[role]
        return monthly * 12.0
