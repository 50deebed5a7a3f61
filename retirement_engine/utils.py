"""
Utility Functions Module

This module provides helper functions for percentile ladders, CSV export, and display.
"""

import os

import numpy as np
import pandas as pd
import logging
from rich.console import Console
from rich.table import Table

logger = logging.getLogger(__name__)
console = Console()

PERCENTILES = (10, 25, 50, 75, 90)


def percentile_index(n, percentile):
    """Index of the ``percentile`` element in a sorted array of length n"""
    return int(np.floor(percentile / 100.0 * (n - 1)))


def percentile_ladder(values, percentiles=PERCENTILES):
    """Sort-and-index percentiles of a 1-D sample"""
    ordered = np.sort(np.asarray(values, dtype=float))
    return {p: float(ordered[percentile_index(len(ordered), p)]) for p in percentiles}


def percentile_rows(matrix, percentiles=PERCENTILES):
    """Per-column sort-and-index percentiles of an (n_samples, n_years) matrix"""
    ordered = np.sort(np.asarray(matrix, dtype=float), axis=0)
    n = ordered.shape[0]
    return {p: tuple(float(v) for v in ordered[percentile_index(n, p)]) for p in percentiles}


def format_currency(value):
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return "n/a"
    return f"${value:,.0f}"


def print_rich_table(df, title):
    """Print a pandas DataFrame as a rich table"""
    table = Table(title=title, title_style="bold magenta", header_style="bold cyan")
    for col in df.columns:
        table.add_column(str(col), justify="right")
    for _, row in df.iterrows():
        table.add_row(*[str(item) for item in row])
    console.print(table)


def aggregate_to_dataframe(aggregate):
    """Per-year balance percentiles of an AggregateResult as a DataFrame"""
    data = {'AGE': list(aggregate.ages)}
    for p, values in aggregate.yearly_balance_percentiles.items():
        data[f'P{p}'] = list(values)
    return pd.DataFrame(data)


def cash_flows_to_dataframe(scenarios):
    """Flatten retained YearlyCashFlowRecords of several scenarios into one DataFrame"""
    rows = []
    for scenario in scenarios:
        for record in scenario.cash_flows or ():
            row = {'SIM_ID': scenario.scenario_index}
            row.update(record.as_row())
            rows.append(row)
    return pd.DataFrame(rows)


def export_to_csv(df, filename, output_dir='Retirement Outputs', subdirectory=None):
    """Export a DataFrame to a CSV file and return its path"""
    if subdirectory:
        output_dir = os.path.join(output_dir, subdirectory)
    os.makedirs(output_dir, exist_ok=True)
    filepath = os.path.join(output_dir, filename)
    df.to_csv(filepath, index=False)
    logger.info(f"Data successfully exported to '{filepath}'")
    return filepath
