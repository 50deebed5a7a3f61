import pytest

from retirement_engine.config import SimulationConfig
from retirement_engine.params import (AssetBuckets, LTCAssumptions, Person, SimulationParameters)


@pytest.fixture
def retiree():
    return Person(current_age=64, retirement_age=65, life_expectancy=90, claim_age=67, pia=2_500.0)


@pytest.fixture
def single_params(retiree):
    """Single retiree, 26-year horizon, no LTC events"""
    return SimulationParameters(
        primary=retiree,
        assets=AssetBuckets(cash=20_000.0, taxable=300_000.0, tax_deferred=500_000.0,
                            tax_free=100_000.0, hsa=20_000.0),
        annual_spending=50_000.0,
        ltc=LTCAssumptions(enabled=False),
    )


@pytest.fixture
def couple_params(single_params):
    spouse = Person(current_age=62, retirement_age=62, life_expectancy=92, claim_age=67, pia=1_200.0)
    return SimulationParameters(
        primary=single_params.primary,
        spouse=spouse,
        assets=single_params.assets,
        annual_spending=70_000.0,
        ltc=LTCAssumptions(enabled=False),
    )


@pytest.fixture
def fast_config():
    config = SimulationConfig()
    config.num_scenarios = 40
    config.seed = 42
    config.num_workers = 1
    config.chunk_size = 10
    config.show_progress = False
    return config
