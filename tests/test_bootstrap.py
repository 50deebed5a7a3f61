import numpy as np
import pandas as pd
import pytest

from retirement_engine.bootstrap import BlockBootstrap, load_annual_history


def test_overlapping_blocks_keep_returns_and_inflation_aligned():
    returns = np.arange(20) / 100.0
    inflation = returns / 10.0
    sampler = BlockBootstrap(returns, inflation, block_length_years=3, overlapping=True)
    assert sampler.num_blocks == 18
    sampled_returns, sampled_inflation = sampler.sample(np.random.default_rng(0), 10)
    assert len(sampled_returns) == 10
    np.testing.assert_allclose(sampled_inflation, sampled_returns / 10.0)


def test_blocks_are_contiguous_history():
    history = np.arange(20, dtype=float)
    sampler = BlockBootstrap(history, history, block_length_years=4, overlapping=False)
    assert sampler.num_blocks == 5
    sampled, _ = sampler.sample(np.random.default_rng(1), 12)
    for block in sampled.reshape(3, 4):
        assert block[0] % 4 == 0
        np.testing.assert_array_equal(np.diff(block), np.ones(3))


def test_same_generator_state_gives_same_path():
    history = np.linspace(-0.2, 0.3, 30)
    sampler = BlockBootstrap(history, history / 5.0, block_length_years=5)
    a, _ = sampler.sample(np.random.default_rng(11), 23)
    b, _ = sampler.sample(np.random.default_rng(11), 23)
    np.testing.assert_array_equal(a, b)
    assert len(a) == 23


def test_not_enough_history():
    with pytest.raises(ValueError):
        BlockBootstrap([0.1, 0.2], [0.01, 0.02], block_length_years=5)


def test_mismatched_series():
    with pytest.raises(ValueError):
        BlockBootstrap([0.1, 0.2, 0.3], [0.01], block_length_years=1)


def test_load_annual_history(tmp_path):
    csv_path = tmp_path / 'history.csv'
    pd.DataFrame({
        'Date': ['2000-12-31', '2001-06-30', '2001-12-31', '2002-12-31'],
        'Portfolio': [100.0, 105.0, 110.0, 99.0],
        'CPI': [100.0, 101.0, 102.0, 104.04],
    }).to_csv(csv_path, index=False)

    returns, inflation, years = load_annual_history(csv_path, 'Portfolio', 'CPI')
    assert list(years) == [2001, 2002]
    np.testing.assert_allclose(returns, [0.10, -0.10])
    np.testing.assert_allclose(inflation, [0.02, 0.02])


def test_load_annual_history_missing_column(tmp_path):
    csv_path = tmp_path / 'history.csv'
    pd.DataFrame({'Date': ['2000-12-31'], 'Portfolio': [100.0]}).to_csv(csv_path, index=False)
    with pytest.raises(ValueError, match='CPI'):
        load_annual_history(csv_path, 'Portfolio', 'CPI')
