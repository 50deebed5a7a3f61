"""
Main Execution Module

Command-line entry point: runs the Monte Carlo projection for a household and,
optionally, the claim-age / sustainable-spend optimization.

    python -m retirement_engine.main --params household.json --scenarios 1000 --seed 42
"""

import argparse
import json
import logging
import time
from dataclasses import replace

import pandas as pd

from . import __version__
from .bootstrap import load_annual_history
from .config import SimulationConfig
from .errors import RetirementEngineError
from .monte_carlo import MonteCarloOrchestrator
from .optimizer import ClaimAgeOptimizer
from .params import AssetBuckets, Person, SimulationParameters
from .utils import (aggregate_to_dataframe, cash_flows_to_dataframe, export_to_csv,
                    format_currency, print_rich_table)

logger = logging.getLogger(__name__)


def example_parameters():
    """Single 60-year-old household used when no parameter file is given"""
    return SimulationParameters(
        primary=Person(current_age=60, retirement_age=65, life_expectancy=93, claim_age=67,
                       monthly_income=7_500.0, years_worked=38, annual_income=90_000.0,
                       contributions=AssetBuckets(tax_deferred=15_000.0, taxable=5_000.0)),
        assets=AssetBuckets(cash=40_000.0, taxable=250_000.0, tax_deferred=650_000.0,
                            tax_free=120_000.0, hsa=30_000.0),
        annual_spending=70_000.0,
        healthcare_spending=6_000.0,
    )


def load_parameters(path, history_csv=None, portfolio_column='Portfolio', inflation_column='Inflation'):
    """Read a JSON parameter document; attach bootstrap history when a CSV is given"""
    with open(path, 'r', encoding='utf-8') as f:
        params = SimulationParameters.from_dict(json.load(f))
    if history_csv:
        returns, inflation, _ = load_annual_history(history_csv, portfolio_column, inflation_column)
        market = replace(params.market, distribution='bootstrap',
                         history_returns=tuple(float(r) for r in returns),
                         history_inflation=tuple(float(i) for i in inflation))
        params = replace(params, market=market)
    return params


def build_arg_parser():
    parser = argparse.ArgumentParser(description="Monte Carlo retirement projection engine")
    parser.add_argument('--params', help="JSON file with SimulationParameters fields")
    parser.add_argument('--history-csv', help="CSV of portfolio/inflation levels; enables block bootstrap")
    parser.add_argument('--portfolio-column', default='Portfolio')
    parser.add_argument('--inflation-column', default='Inflation')
    parser.add_argument('--scenarios', type=int, help="Number of Monte Carlo scenarios")
    parser.add_argument('--seed', type=int, help="Base random seed")
    parser.add_argument('--workers', type=int, help="Worker processes (1 = in-process)")
    parser.add_argument('--target', type=float, help="Target success probability, e.g. 0.95")
    parser.add_argument('--antithetic', action='store_true', help="Use antithetic scenario pairs")
    parser.add_argument('--optimize', action='store_true', help="Search claim ages and sustainable spend")
    parser.add_argument('--timeout', type=float, help="Optimizer time limit in seconds")
    parser.add_argument('--export-csv', action='store_true', help="Write percentile and cash-flow CSVs")
    parser.add_argument('--output-dir', help="Directory for CSV output")
    parser.add_argument('--quiet', action='store_true', help="Hide progress bars")
    return parser


def config_from_args(args):
    config = SimulationConfig()
    if args.scenarios is not None:
        config.num_scenarios = args.scenarios
    if args.seed is not None:
        config.seed = args.seed
    if args.workers is not None:
        config.num_workers = args.workers
    if args.target is not None:
        config.success_target = args.target
    if args.output_dir:
        config.output_directory = args.output_dir
    config.antithetic = args.antithetic
    config.generate_csv_summary = args.export_csv
    config.retain_cash_flows = args.export_csv
    config.show_progress = not args.quiet
    config.validate()
    return config


def display_results(aggregate, params):
    """Display success probability and balance percentile ladders"""
    print("\n--- Monte Carlo Results ---")
    print(f"Scenarios completed: {aggregate.completed_scenarios}/{aggregate.requested_scenarios} "
          f"(aborted: {aggregate.aborted_scenarios}, base seed: {aggregate.base_seed})")
    print(f"Annual spending (today's $): {format_currency(params.annual_spending)}")
    print(f"Probability of success: {aggregate.success_probability * 100:.1f}%")
    if params.legacy_goal > 0:
        print(f"Probability of meeting legacy goal ({format_currency(params.legacy_goal)}): "
              f"{aggregate.legacy_success_probability * 100:.1f}%")
    if aggregate.median_depletion_age is not None:
        print(f"Median depletion age (depleted scenarios): {aggregate.median_depletion_age:.1f}")
    print(f"Scenarios with an LTC event: {aggregate.ltc_event_rate * 100:.1f}%")
    print(f"CVaR {aggregate.cvar_confidence * 100:.0f}% of ending balance: "
          f"{format_currency(aggregate.ending_balance_cvar)}")
    print(f"Median max drawdown: {aggregate.max_drawdown_percentiles[50] * 100:.1f}% "
          f"(P90 {aggregate.max_drawdown_percentiles[90] * 100:.1f}%)")
    print(f"Failures with early-retirement losses: {aggregate.sequence_risk_score * 100:.1f}%")

    ending = pd.DataFrame({
        'Percentile': [f"P{p}" for p in aggregate.ending_balance_percentiles],
        'Ending Balance (Nominal $)': [format_currency(v) for v in aggregate.ending_balance_percentiles.values()],
    })
    print_rich_table(ending, "Ending Balance Percentiles")

    yearly = aggregate_to_dataframe(aggregate)
    every_fifth = yearly[yearly['AGE'] % 5 == 0].copy()
    for col in every_fifth.columns[1:]:
        every_fifth[col] = every_fifth[col].apply(format_currency)
    print_rich_table(every_fifth, "Portfolio Balance by Age (Nominal $)")


def display_optimization(result):
    """Display the best claiming strategy and runner-ups"""
    print("\n--- Claim-Age Optimization ---")
    if result.cancelled:
        print("[WARNING] Search stopped early; showing the best result found so far")
    if result.best is None:
        print("No strategy evaluated")
        return
    rows = []
    for rank, evaluation in enumerate(result.evaluations[:10], start=1):
        rows.append({
            'Rank': rank,
            'Strategy': str(evaluation.strategy),
            'Sustainable Spend': format_currency(evaluation.sustainable_spend),
            'Success': f"{evaluation.success_probability * 100:.1f}%",
            'Converged': 'yes' if evaluation.converged else 'no',
        })
    print_rich_table(pd.DataFrame(rows),
                     f"Sustainable Spend at {result.success_target * 100:.0f}% Success")


def main(argv=None):
    """Main execution function - run this to start the simulation"""
    logging.basicConfig(level=logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')
    args = build_arg_parser().parse_args(argv)

    print("\n" + "=" * 70)
    print(f"RETIREMENT PROJECTION ENGINE v{__version__}")
    print("=" * 70 + "\n")

    try:
        config = config_from_args(args)
        if args.params:
            params = load_parameters(args.params, args.history_csv, args.portfolio_column,
                                     args.inflation_column)
        else:
            logger.info("No --params given, using the built-in example household")
            params = example_parameters()
        params.validate()

        print(f"[INFO] Distribution: {params.market.distribution}, scenarios: {config.num_scenarios}, "
              f"workers: {config.num_workers}, seed: {config.seed}")
        t_start = time.perf_counter()

        with MonteCarloOrchestrator(config) as orchestrator:
            aggregate = orchestrator.run(params)
            display_results(aggregate, params)

            optimization = None
            if args.optimize:
                optimizer = ClaimAgeOptimizer(orchestrator, config)
                optimization = optimizer.optimize(params, timeout=args.timeout)
                display_optimization(optimization)

        if config.generate_csv_summary:
            export_to_csv(aggregate_to_dataframe(aggregate), 'balance_percentiles.csv',
                          config.output_directory)
            exported = aggregate.scenarios[:config.num_sims_to_export]
            export_to_csv(cash_flows_to_dataframe(exported), 'scenario_cash_flows.csv',
                          config.output_directory, subdirectory='Simulation Data')
            if optimization is not None and optimization.best is not None:
                export_to_csv(pd.DataFrame([{
                    'STRATEGY': str(e.strategy),
                    'SUSTAINABLE_SPEND': e.sustainable_spend,
                    'SUCCESS_PROBABILITY': e.success_probability,
                    'CONVERGED': e.converged,
                    'BRACKET_LOW': e.bracket[0],
                    'BRACKET_HIGH': e.bracket[1],
                } for e in optimization.evaluations]), 'claiming_strategies.csv', config.output_directory)

        elapsed = time.perf_counter() - t_start
        print(f"\n[OK] Finished in {elapsed:.1f}s (mean lifetime taxes {format_currency(aggregate.mean_total_taxes)}, "
              f"median ending balance {format_currency(aggregate.ending_balance_percentiles[50])})")
        return 0
    except RetirementEngineError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
