"""
Scenario Simulation Module

Runs one full household path year by year:
ACCUMULATION -> DECUMULATION -> SUCCESS | DEPLETED.

Within a year, cash flows (contributions or withdrawals) happen at the start of
the year at that year's price level and the remaining balances then earn the
year's returns. Depletion is a marker on the path, not a change of regime: a
household that runs dry before retirement keeps working and saving, and later
years keep running at zero balance.
"""

import math
import logging

from .errors import SimulationRuntimeError
from .ltc import LTCEventModel
from .params import AssetBuckets, BUCKET_NAMES
from .results import Phase, ScenarioResult, YearlyCashFlowRecord
from .returns import ReturnModel
from .risk import max_drawdown
from .social_security import HouseholdBenefits, apply_cola
from .tax import BRACKET_YEAR, MEDICARE_AGE, irmaa_surcharge
from .withdrawal import create_withdrawal_strategy, required_minimum_distribution, rmd_start_age

logger = logging.getLogger(__name__)


class ScenarioSimulator:
    """
    Composes the return, Social Security, LTC and withdrawal models into one
    single-path simulation. Safe to reuse for many scenarios: all per-path
    state lives inside ``run``.
    """

    def __init__(self, params, retain_cash_flows=False):
        self.params = params
        self.retain_cash_flows = retain_cash_flows
        self.return_model = ReturnModel(params.market, params.allocation)
        self.ltc_model = LTCEventModel(params.ltc, params.ltc_insurance)
        self.benefits = HouseholdBenefits(params.primary, params.spouse, params.start_year)

        self.people = {'primary': params.primary}
        if params.spouse is not None:
            self.people['spouse'] = params.spouse
        # Runs until the later life expectancy; a person is alive while age < life_expectancy
        self.horizon = max(p.life_expectancy - p.current_age for p in self.people.values())

        self.rmd_ages = {}
        for role, person in self.people.items():
            birth_year = person.birth_year or (params.start_year - person.current_age)
            self.rmd_ages[role] = params.withdrawal.rmd_age or rmd_start_age(birth_year)

        classes = list(params.market.asset_classes)
        self.cash_class = classes.index('cash') if 'cash' in classes else None
        # Brackets are in BRACKET_YEAR dollars
        self.tax_index_base = (1.0 + params.market.inflation_mean) ** max(0, params.start_year - BRACKET_YEAR)

    def _pension(self, role, ages, alive):
        person = self.people[role]
        if person.pension <= 0:
            return 0.0
        years_paid = ages[role] - person.retirement_age
        if years_paid < 0:
            return 0.0
        amount = person.pension * (1.0 + person.pension_cola) ** years_paid
        if alive[role]:
            return amount
        survivors = [r for r in self.people if r != role and alive[r]]
        return amount * person.pension_survivor_fraction if survivors else 0.0

    def run(self, context):
        """
        Simulate one scenario.

        Parameters:
        -----------
        context : RandomContext
            Seed and antithetic flag of this scenario

        Returns:
        --------
        ScenarioResult
        """
        p = self.params
        path = self.return_model.sample(context.market_rng(), self.horizon, mirrored=context.mirrored)
        ltc_rng = context.ltc_rng()
        strategy = create_withdrawal_strategy(p.withdrawal, p.tax)

        balances = p.assets.as_dict()
        cumulative_inflation = 1.0
        retired = False
        retirement_year = None
        events = {}
        records = []
        balance_path = []
        age_path = []
        total_taxes = 0.0
        total_shortfall = 0.0
        depletion_year = None
        depletion_age = None
        prior_real_return = None
        magi_history = []
        return_path = []
        couple = len(self.people) == 2

        for t in range(self.horizon):
            ages = {role: person.current_age + t for role, person in self.people.items()}
            alive = {role: ages[role] < person.life_expectancy for role, person in self.people.items()}
            primary = self.people['primary']
            if not retired and (ages['primary'] >= primary.retirement_age or not alive['primary']):
                retired = True
                retirement_year = t
            # Accounts pass to the spouse once the primary has died
            owner = 'primary' if alive['primary'] else 'spouse'
            owner_age = ages[owner]
            index = cumulative_inflation

            # Guaranteed income and contributions
            social_security = apply_cola(self.benefits.annual_benefit(ages, alive), t, p.cola_rate)
            pension = sum(self._pension(role, ages, alive) for role in self.people)
            part_time = 0.0
            employment = 0.0
            contributions = {name: 0.0 for name in BUCKET_NAMES}
            for role, person in self.people.items():
                if not alive[role]:
                    continue
                if ages[role] < person.retirement_age:
                    employment += person.annual_income * index
                    for name, amount in person.contributions.as_dict().items():
                        contributions[name] += amount * index
                elif person.part_time_until_age is not None and ages[role] < person.part_time_until_age:
                    part_time += person.part_time_income * index
            for name, amount in contributions.items():
                balances[name] += amount

            # Long-term care
            for role in self.people:
                if alive[role] and role not in events:
                    event = self.ltc_model.sample_event(role, ages[role], t, ltc_rng)
                    if event is not None:
                        events[role] = event
            living_events = [event for role, event in events.items() if alive[role]]
            insured_count = sum(alive.values()) if self.ltc_model.insured else 0
            ltc = self.ltc_model.cost_for_year(living_events, t, insured_count)
            ltc_net_care = ltc.gross_cost - ltc.insurance_offset

            filing_status = p.tax.filing_status or ('married' if sum(alive.values()) == 2 else 'single')
            irmaa = 0.0

            if not retired:
                # Living costs and premiums are paid from earnings before retirement
                spending = 0.0
                medical = 0.0
                need = ltc_net_care
                ordinary_income = 0.0
                taxed_social_security = 0.0
            else:
                base_spending = p.annual_spending
                if couple and sum(alive.values()) == 1:
                    base_spending *= p.survivor_expense_ratio
                extras = sum(item.annual_amount for item in p.expenses
                             if item.active(owner_age) and not item.qualifying_medical)
                medical = (p.healthcare_spending + sum(item.annual_amount for item in p.expenses
                                                       if item.active(owner_age)
                                                       and item.qualifying_medical)) * index
                if t >= 2:
                    # Surcharges use MAGI from two years earlier
                    beneficiaries = sum(1 for role in self.people
                                        if alive[role] and ages[role] >= MEDICARE_AGE)
                    irmaa = beneficiaries * irmaa_surcharge(magi_history[t - 2], filing_status,
                                                            index * self.tax_index_base)
                medical += irmaa
                guaranteed = social_security + pension + part_time + employment
                spending = strategy.adjust_spending((base_spending + extras) * index,
                                                    sum(balances.values()), guaranteed,
                                                    self.horizon - t, prior_real_return)
                need = spending + medical + ltc_net_care + ltc.premium
                ordinary_income = pension + part_time + employment
                taxed_social_security = social_security

            rmd = required_minimum_distribution(balances['tax_deferred'], owner_age, self.rmd_ages[owner])

            outcome = strategy.execute(balances, need, medical + ltc_net_care, ordinary_income,
                                       taxed_social_security, rmd, filing_status,
                                       index * self.tax_index_base)
            balances = outcome.balances
            total_taxes += outcome.taxes.total
            total_shortfall += outcome.shortfall
            # Pre-retirement earnings are paid outside the portfolio but still count for IRMAA
            magi_history.append(outcome.taxes.magi if retired
                                else outcome.taxes.magi + employment + pension + part_time)
            if outcome.depleted and depletion_year is None:
                depletion_year = t
                depletion_age = owner_age
                logger.debug(f"[SCENARIO] Scenario {context.scenario_index} depleted in year {t} "
                             f"(age {owner_age}), shortfall ${outcome.shortfall:,.0f}")

            # Market growth over the year
            portfolio_return = float(path.portfolio_returns[t])
            cash_return = (float(path.class_returns[t, self.cash_class])
                           if self.cash_class is not None else portfolio_return)
            inflation = float(path.inflation[t])
            for name in BUCKET_NAMES:
                growth = cash_return if name == 'cash' else portfolio_return
                balances[name] = max(0.0, balances[name] * (1.0 + growth))

            state = list(balances.values()) + [need, outcome.taxes.total, inflation, portfolio_return]
            if not all(math.isfinite(v) for v in state):
                raise SimulationRuntimeError(
                    f"Non-finite simulation state in scenario {context.scenario_index}, year {t}",
                    scenario_index=context.scenario_index, year_index=t)

            prior_real_return = (1.0 + portfolio_return) / (1.0 + inflation) - 1.0
            cumulative_inflation *= (1.0 + inflation)
            ending = AssetBuckets(**balances)
            balance_path.append(ending.total)
            age_path.append(ages['primary'])
            return_path.append(portfolio_return)

            if self.retain_cash_flows:
                records.append(YearlyCashFlowRecord(
                    year_index=t,
                    calendar_year=p.start_year + t,
                    primary_age=ages['primary'],
                    spouse_age=ages.get('spouse'),
                    phase=(Phase.DEPLETED if depletion_year is not None
                           else Phase.DECUMULATION if retired else Phase.ACCUMULATION),
                    social_security=social_security,
                    pension=pension,
                    part_time_income=part_time,
                    employment_income=employment,
                    contributions=sum(contributions.values()),
                    spending=spending,
                    healthcare=medical,
                    irmaa=irmaa,
                    ltc_gross_cost=ltc.gross_cost,
                    ltc_insurance_offset=ltc.insurance_offset,
                    ltc_premium=ltc.premium,
                    withdrawals=AssetBuckets(**outcome.withdrawals),
                    rmd=outcome.rmd,
                    taxes=outcome.taxes.total,
                    reinvested=outcome.reinvested,
                    shortfall=outcome.shortfall,
                    portfolio_return=portfolio_return,
                    inflation=inflation,
                    cumulative_inflation=cumulative_inflation,
                    ending=ending,
                    depleted=outcome.depleted,
                ))

        final_phase = Phase.DEPLETED if depletion_year is not None else Phase.SUCCESS
        ending_balance = balance_path[-1] if balance_path else p.assets.total
        ending_real = ending_balance / cumulative_inflation
        return ScenarioResult(
            scenario_index=context.scenario_index,
            final_phase=final_phase,
            ending_balance=ending_balance,
            ending_balance_real=ending_real,
            depletion_year=depletion_year,
            depletion_age=depletion_age,
            balances=tuple(balance_path),
            ages=tuple(age_path),
            portfolio_returns=tuple(return_path),
            retirement_year=retirement_year,
            max_drawdown=max_drawdown([p.assets.total] + balance_path),
            ltc_events=tuple(events[role] for role in self.people if role in events),
            total_taxes=total_taxes,
            total_shortfall=total_shortfall,
            legacy_met=final_phase is Phase.SUCCESS and ending_real >= p.legacy_goal,
            cash_flows=tuple(records) if self.retain_cash_flows else None,
        )


def simulate_scenario(params, context, retain_cash_flows=False):
    """Convenience wrapper running a single scenario"""
    return ScenarioSimulator(params, retain_cash_flows).run(context)
