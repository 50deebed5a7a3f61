"""
Return Model Module

Samples annual per-asset-class returns and inflation for one scenario and blends
them by allocation weights.

Sampling is split in two steps. ``ReturnModel.draw`` produces the standardized
random inputs of a path (a ``ReturnDraw``); ``ReturnModel.realize`` turns those
inputs into returns. Keeping the shocks separate is what makes the antithetic
mirror deterministic: ``mirror`` flips the shocks and the same ``realize`` maps
them to the mirrored path.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
import logging

from .bootstrap import create_block_bootstrap_sampler
from .errors import InvalidParameterError

logger = logging.getLogger(__name__)

MIN_STUDENT_T_DF = 2.1
RETURN_FLOOR = -0.99


@dataclass(frozen=True, eq=False)
class ReturnDraw:
    """Standardized random inputs for ``n_years`` of one path"""
    normals: np.ndarray            # (n_years, n_classes) independent N(0, 1)
    chi_square: np.ndarray         # (n_years,) chi-square(df) mixing draws, Student-t only
    jump_uniforms: np.ndarray      # (n_years,) U(0, 1), jump fires when u < p
    jump_normals: np.ndarray       # (n_years,) N(0, 1) jump sizes
    inflation_normals: np.ndarray  # (n_years,) N(0, 1)
    history_returns: Optional[np.ndarray] = None    # bootstrap only
    history_inflation: Optional[np.ndarray] = None

    @property
    def n_years(self):
        return len(self.jump_uniforms)


@dataclass(frozen=True, eq=False)
class ReturnPath:
    """Realized nominal returns and inflation for one path"""
    class_returns: np.ndarray      # (n_years, n_classes)
    portfolio_returns: np.ndarray  # (n_years,)
    inflation: np.ndarray          # (n_years,)
    jumps: np.ndarray              # (n_years,) bool, jump years

    @property
    def real_returns(self):
        return (1.0 + self.portfolio_returns) / (1.0 + self.inflation) - 1.0


class ReturnModel:
    """
    Annual return generator for one set of market assumptions.

    Supported distributions:
      - ``normal``: r = mu + sigma * z
      - ``student_t``: multivariate t with ``t_df`` degrees of freedom, rescaled
        by sqrt((df - 2) / df) so the target mean and variance hold
      - ``jump_diffusion``: normal diffusion times a Bernoulli jump factor
        exp(J), J ~ N(jump_mean, jump_std), scaled per class by relative
        volatility. The diffusion mean is compensated so E[r] = mu.
      - ``bootstrap``: historical blocks of portfolio returns and inflation
    """

    def __init__(self, market, allocation):
        errors = market.validate()
        if market.distribution == 'student_t' and market.t_df <= MIN_STUDENT_T_DF:
            errors.append(f"Student-t degrees of freedom must exceed {MIN_STUDENT_T_DF}")
        if errors:
            raise InvalidParameterError(errors)

        self.market = market
        self.distribution = market.distribution
        self.weights = np.asarray(allocation, dtype=float)
        self.means = np.asarray(market.expected_returns, dtype=float)
        self.vols = np.asarray(market.volatilities, dtype=float)
        self.n_classes = len(self.means)

        if market.correlations is None:
            correlation = np.eye(self.n_classes)
        else:
            correlation = np.asarray(market.correlations, dtype=float)
        try:
            self.cholesky = np.linalg.cholesky(correlation)
        except np.linalg.LinAlgError as e:
            raise InvalidParameterError("market.correlations must be positive definite") from e

        # Jump sizes scale with each class's volatility relative to the riskiest class
        max_vol = self.vols.max() if self.n_classes else 0.0
        self.jump_scale = self.vols / max_vol if max_vol > 0 else np.zeros(self.n_classes)
        jump_mu = self.jump_scale * market.jump_mean
        jump_sd = self.jump_scale * market.jump_std
        self.expected_jump_factor = 1.0 + market.jump_probability * (
            np.exp(jump_mu + 0.5 * jump_sd ** 2) - 1.0)
        # (1 + m_d) * E[jump factor] = 1 + mu
        self.diffusion_means = (1.0 + self.means) / self.expected_jump_factor - 1.0

        self.sampler = None
        if self.distribution == 'bootstrap':
            try:
                self.sampler = create_block_bootstrap_sampler(market)
            except ValueError as e:
                raise InvalidParameterError(str(e)) from e

    @property
    def supports_mirror(self):
        return self.sampler is None

    def draw(self, rng, n_years):
        """Draw the standardized inputs of an ``n_years`` path from ``rng``"""
        if self.distribution == 'bootstrap':
            returns, inflation = self.sampler.sample(rng, n_years)
            zeros = np.zeros(n_years)
            return ReturnDraw(np.zeros((n_years, self.n_classes)), np.ones(n_years), np.ones(n_years),
                              zeros, zeros, history_returns=returns, history_inflation=inflation)

        normals = rng.standard_normal((n_years, self.n_classes))
        if self.distribution == 'student_t':
            chi_square = rng.chisquare(self.market.t_df, n_years)
        else:
            chi_square = np.full(n_years, np.nan)
        jump_uniforms = rng.random(n_years)
        jump_normals = rng.standard_normal(n_years)
        inflation_normals = rng.standard_normal(n_years)
        return ReturnDraw(normals, chi_square, jump_uniforms, jump_normals, inflation_normals)

    def mirror(self, draw):
        """
        Antithetic mirror of a draw: normal shocks negated, uniforms reflected
        (u -> 1 - u), chi-square mixing variable shared.
        """
        if draw.history_returns is not None:
            raise InvalidParameterError("Antithetic variates are not available for the bootstrap distribution")
        return ReturnDraw(
            normals=-draw.normals,
            chi_square=draw.chi_square,
            jump_uniforms=1.0 - draw.jump_uniforms,
            jump_normals=-draw.jump_normals,
            inflation_normals=-draw.inflation_normals,
        )

    def realize(self, draw):
        """Map a ``ReturnDraw`` to nominal class returns, portfolio return and inflation"""
        n_years = draw.n_years
        market = self.market

        if draw.history_returns is not None:
            portfolio = np.maximum(draw.history_returns, RETURN_FLOOR)
            class_returns = np.tile(portfolio[:, None], (1, self.n_classes))
            inflation = np.maximum(draw.history_inflation, RETURN_FLOOR)
            return ReturnPath(class_returns, portfolio, inflation, np.zeros(n_years, dtype=bool))

        shocks = draw.normals @ self.cholesky.T
        jumps = np.zeros(n_years, dtype=bool)

        if self.distribution == 'student_t':
            df = market.t_df
            scale = np.sqrt((df - 2.0) / df)
            t_shocks = shocks / np.sqrt(draw.chi_square / df)[:, None]
            class_returns = self.means + self.vols * scale * t_shocks
        elif self.distribution == 'jump_diffusion':
            jumps = draw.jump_uniforms < market.jump_probability
            jump_log = market.jump_mean + market.jump_std * draw.jump_normals
            jump_factor = np.where(jumps[:, None], np.exp(jump_log[:, None] * self.jump_scale), 1.0)
            class_returns = (1.0 + self.diffusion_means + self.vols * shocks) * jump_factor - 1.0
        else:
            class_returns = self.means + self.vols * shocks

        inflation = np.maximum(market.inflation_mean + market.inflation_std * draw.inflation_normals,
                               RETURN_FLOOR)
        if market.real_returns:
            class_returns = (1.0 + class_returns) * (1.0 + inflation)[:, None] - 1.0
        class_returns = np.maximum(class_returns, RETURN_FLOOR)
        portfolio = class_returns @ self.weights
        return ReturnPath(class_returns, portfolio, inflation, jumps)

    def sample(self, rng, n_years, mirrored=False):
        """Draw and realize a path; ``mirrored`` realizes the antithetic twin instead"""
        draw = self.draw(rng, n_years)
        if mirrored:
            draw = self.mirror(draw)
        return self.realize(draw)
