"""
Block Bootstrap Module

This module provides functions for block bootstrap sampling of historical annual
portfolio returns and inflation data.
"""

import numpy as np
import pandas as pd
import logging

logger = logging.getLogger(__name__)


def load_annual_history(csv_path, portfolio_column_name, inflation_column_name, date_column_name='Date'):
    """
    Load a CSV of portfolio and inflation index levels and convert it to annual returns.

    The file may hold daily, monthly or annual rows; consecutive level changes are
    compounded within each calendar year. Partial first/last years are kept.

    Args:
        csv_path: Path to CSV file
        portfolio_column_name: Name of column containing portfolio index levels
        inflation_column_name: Name of column containing a price index (e.g. CPI)
        date_column_name: Name of the date column

    Returns:
        tuple: (annual_returns, annual_inflation, years)
    """
    logger.info(f"[BOOTSTRAP] Loading history from {csv_path}")
    df = pd.read_csv(csv_path)

    for column in (date_column_name, portfolio_column_name, inflation_column_name):
        if column not in df.columns:
            raise ValueError(f"Column '{column}' not found in CSV. Available columns: {list(df.columns)}")

    df[date_column_name] = pd.to_datetime(df[date_column_name], format='mixed', errors='coerce')
    na_count = df[date_column_name].isna().sum()
    if na_count > 0:
        logger.warning(f"[BOOTSTRAP] {na_count} dates could not be parsed. Dropping rows with invalid dates.")
        df = df.dropna(subset=[date_column_name])
    df = df.sort_values(date_column_name)

    portfolio_values = df[portfolio_column_name].to_numpy(dtype=float)
    inflation_values = df[inflation_column_name].to_numpy(dtype=float)
    if len(portfolio_values) < 2:
        raise ValueError(f"Need at least two rows of history in '{csv_path}'")

    period_returns = np.diff(portfolio_values) / portfolio_values[:-1]
    period_inflation = np.diff(inflation_values) / inflation_values[:-1]

    # Both series are grouped by the same calendar year so each pair stays aligned
    df_changes = pd.DataFrame({
        'Year': df[date_column_name].dt.year.to_numpy()[1:],
        'Return': period_returns,
        'Inflation': period_inflation,
    })
    annual = df_changes.groupby('Year').agg({
        'Return': lambda x: np.prod(1 + x) - 1.0,
        'Inflation': lambda x: np.prod(1 + x) - 1.0,
    }).reset_index()

    annual_returns = annual['Return'].to_numpy()
    annual_inflation = annual['Inflation'].to_numpy()
    logger.info(f"[BOOTSTRAP] {len(annual_returns)} annual observations "
                f"({annual['Year'].iloc[0]}-{annual['Year'].iloc[-1]}), "
                f"mean return={np.mean(annual_returns):.4f}, mean inflation={np.mean(annual_inflation):.4f}")
    return annual_returns, annual_inflation, annual['Year'].to_numpy()


class BlockBootstrap:
    """
    Paired block bootstrap over annual history.

    Each history year is one (return, inflation) row, so a sampled block always
    keeps a year's market return next to that same year's inflation. Block
    starts come from every year that leaves room for a full block
    (overlapping) or from multiples of the block length (non-overlapping).
    """

    def __init__(self, annual_returns, annual_inflation, block_length_years, overlapping=True):
        returns = np.asarray(annual_returns, dtype=float)
        inflation = np.asarray(annual_inflation, dtype=float)
        if returns.shape != inflation.shape:
            raise ValueError(f"annual_returns and annual_inflation must have the same length. "
                             f"Got {len(returns)} and {len(inflation)}")
        self.history = np.column_stack([returns, inflation])
        self.block_length = int(block_length_years)
        self.overlapping = overlapping

        n_years = len(self.history)
        if self.block_length < 1 or n_years < self.block_length:
            raise ValueError(f"Not enough data for block length {self.block_length}. "
                             f"Need at least {self.block_length} years, got {n_years}")
        if overlapping:
            self.block_starts = np.arange(n_years - self.block_length + 1)
        else:
            self.block_starts = np.arange(n_years // self.block_length) * self.block_length

    @property
    def num_blocks(self):
        return len(self.block_starts)

    def sample(self, rng, num_years):
        """
        Concatenate random blocks into a path of ``num_years`` years.

        Returns:
            tuple: (returns, inflation) - arrays of length num_years
        """
        blocks_needed = -(-num_years // self.block_length)
        starts = self.block_starts[rng.integers(0, self.num_blocks, size=blocks_needed)]
        rows = (starts[:, None] + np.arange(self.block_length)).ravel()[:num_years]
        path = self.history[rows]
        return path[:, 0], path[:, 1]


def create_block_bootstrap_sampler(market):
    """Create a block bootstrap sampler from ``MarketAssumptions`` history."""
    sampler = BlockBootstrap(market.history_returns, market.history_inflation,
                             market.block_length_years, overlapping=market.block_overlapping)
    logger.debug(f"[BOOTSTRAP] {sampler.num_blocks} candidate blocks of {sampler.block_length} years")
    return sampler
