import pickle
from dataclasses import replace

import pytest

from retirement_engine.config import SimulationConfig
from retirement_engine.errors import InvalidParameterError, SimulationRuntimeError
from retirement_engine.params import AssetBuckets, ClaimingStrategy, ExpenseItem, SimulationParameters


def test_valid_parameters_pass(single_params, couple_params):
    single_params.validate()
    couple_params.validate()


def test_claim_age_outside_range(single_params):
    params = replace(single_params, primary=replace(single_params.primary, claim_age=61))
    with pytest.raises(InvalidParameterError, match='claim_age'):
        params.validate()


def test_allocation_must_sum_to_one(single_params):
    with pytest.raises(InvalidParameterError, match='sum to 1'):
        replace(single_params, allocation=(0.5, 0.3, 0.1)).validate()


def test_negative_balance_rejected(single_params):
    with pytest.raises(InvalidParameterError, match='assets.cash'):
        replace(single_params, assets=AssetBuckets(cash=-1.0)).validate()


def test_all_problems_reported_together(single_params):
    params = replace(single_params, allocation=(0.5, 0.3, 0.1), assets=AssetBuckets(cash=-1.0),
                     survivor_expense_ratio=0.0)
    with pytest.raises(InvalidParameterError) as excinfo:
        params.validate()
    assert len(excinfo.value.errors) == 3


def test_errors_survive_pickling():
    error = pickle.loads(pickle.dumps(InvalidParameterError(['a', 'b'])))
    assert error.errors == ['a', 'b']
    runtime = pickle.loads(pickle.dumps(SimulationRuntimeError('nan', scenario_index=3, year_index=7)))
    assert (runtime.scenario_index, runtime.year_index) == (3, 7)


def test_asset_bucket_total():
    assets = AssetBuckets(cash=1.0, taxable=2.0, tax_deferred=3.0, tax_free=4.0, hsa=5.0)
    assert assets.total == 15.0
    assert AssetBuckets.from_dict(assets.as_dict()) == assets


def test_with_claiming_updates_both_members(couple_params):
    updated = couple_params.with_claiming(ClaimingStrategy(70, 62))
    assert updated.primary.claim_age == 70
    assert updated.spouse.claim_age == 62
    assert str(updated.claiming_strategy) == 'claim@70/62'
    assert str(ClaimingStrategy(65)) == 'claim@65'


def test_expense_item_active_window():
    item = ExpenseItem('travel', 10_000, start_age=65, end_age=75)
    assert not item.active(64)
    assert item.active(65) and item.active(74)
    assert not item.active(75)


def test_from_dict():
    params = SimulationParameters.from_dict({
        'primary': {'current_age': 60, 'retirement_age': 65, 'claim_age': 68, 'pia': 2_000,
                    'contributions': {'tax_deferred': 10_000}},
        'spouse': {'current_age': 58, 'retirement_age': 63},
        'assets': {'taxable': 100_000, 'tax_deferred': 400_000},
        'allocation': [0.5, 0.4, 0.1],
        'market': {'distribution': 'student_t', 't_df': 6},
        'expenses': [{'name': 'car', 'annual_amount': 5_000, 'start_age': 66, 'end_age': 70}],
        'ltc_insurance': {'daily_benefit': 150},
        'withdrawal': {'strategy': 'guardrails'},
        'legacy_goal': 100_000,
    })
    params.validate()
    assert params.primary.contributions.tax_deferred == 10_000
    assert params.spouse.current_age == 58
    assert params.allocation == (0.5, 0.4, 0.1)
    assert params.market.distribution == 'student_t'
    assert params.expenses[0].name == 'car'
    assert params.has_ltc_insurance and params.ltc_insurance.daily_benefit == 150
    assert params.withdrawal.strategy == 'guardrails'


def test_earnings_history_from_json_keys():
    params = SimulationParameters.from_dict({
        'primary': {'current_age': 60, 'retirement_age': 65, 'earnings_history': {'2001': 50_000, '1999': 40_000}},
        'assets': {'cash': 1_000},
    })
    params.validate()
    assert params.primary.earnings_history == ((1999, 40_000.0), (2001, 50_000.0))


def test_negative_earnings_rejected(single_params):
    primary = replace(single_params.primary, earnings_history=((2000, -1.0),))
    with pytest.raises(InvalidParameterError, match='earnings_history'):
        replace(single_params, primary=primary).validate()


def test_from_dict_rejects_unknown_and_malformed():
    with pytest.raises(InvalidParameterError, match='Unknown parameter'):
        SimulationParameters.from_dict({'primary': {}, 'assets': {}, 'bogus': 1})
    with pytest.raises(InvalidParameterError, match='Malformed'):
        SimulationParameters.from_dict({'primary': {'current_age': 60}, 'assets': {}})
    with pytest.raises(InvalidParameterError):
        SimulationParameters.from_dict({'assets': {}})


def test_config_validation():
    config = SimulationConfig()
    config.validate()

    config.antithetic = True
    config.num_scenarios = 101
    with pytest.raises(InvalidParameterError, match='even'):
        config.validate()

    config = SimulationConfig()
    config.spend_search_low = 300_000
    config.seed = -1
    with pytest.raises(InvalidParameterError) as excinfo:
        config.validate()
    assert len(excinfo.value.errors) == 2
