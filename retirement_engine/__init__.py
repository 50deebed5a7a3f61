"""
Retirement Projection Engine

Monte Carlo projection of a household's retirement finances with Social Security
claiming, tax-aware withdrawal sequencing, long-term-care events and claim-age /
sustainable-spend optimization.

config.py to set the engine run-time options.
params.py for the household inputs.
main.py to run the simulation from the command line.
"""

__version__ = "1.0"
