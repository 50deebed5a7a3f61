"""
Downside risk measures over simulated scenarios.
"""

import numpy as np

CVAR_CONFIDENCE = 0.95
SEQUENCE_RISK_YEARS = 5
SEQUENCE_RISK_MIN_LOSSES = 2


def conditional_value_at_risk(values, confidence=CVAR_CONFIDENCE):
    """
    Mean of the worst (1 - confidence) share of outcomes.

    The tail holds floor(n * (1 - confidence)) sorted values; when that is zero
    the single worst value is returned.
    """
    ordered = np.sort(np.asarray(values, dtype=float))
    if len(ordered) == 0:
        return 0.0
    cutoff = int(np.floor(len(ordered) * (1.0 - confidence) + 1e-9))
    if cutoff == 0:
        return float(ordered[0])
    return float(ordered[:cutoff].mean())


def max_drawdown(balances):
    """Largest fall from a running peak, as a fraction of that peak (0-1)"""
    worst = 0.0
    peak = None
    for balance in balances:
        if peak is None or balance > peak:
            peak = balance
        elif peak > 0:
            worst = max(worst, min(1.0, (peak - balance) / peak))
    return worst


def sequence_risk_score(results, early_years=SEQUENCE_RISK_YEARS, min_losses=SEQUENCE_RISK_MIN_LOSSES):
    """
    Share of failed scenarios whose first ``early_years`` of retirement held at
    least ``min_losses`` negative portfolio returns. Failures that retire too
    late to observe a full early window are left out; 0.0 without failures.
    """
    failed = 0
    early_losses = 0
    for result in results:
        if result.success or result.retirement_year is None:
            continue
        window = result.portfolio_returns[result.retirement_year:result.retirement_year + early_years]
        if len(window) < early_years:
            continue
        failed += 1
        if sum(1 for r in window if r < 0) >= min_losses:
            early_losses += 1
    return early_losses / failed if failed else 0.0
