"""
Per-scenario random number context.

Each scenario receives a ``RandomContext`` by value. Generators are derived
from it on demand, so no generator state is ever shared between scenarios and
a scenario's draws depend only on ``(base_seed, scenario_index)``.
"""

from dataclasses import dataclass

import numpy as np


MARKET_STREAM = 0
LTC_STREAM = 1


@dataclass(frozen=True)
class RandomContext:
    seed: int
    scenario_index: int = 0
    mirrored: bool = False  # second member of an antithetic pair

    @classmethod
    def for_scenario(cls, base_seed, scenario_index, antithetic=False):
        """
        Context for one scenario of a run.

        Without antithetic pairing scenario ``i`` is seeded with ``base_seed + i``.
        With pairing, scenarios ``2k`` and ``2k + 1`` share seed ``base_seed + k``
        and the odd member replays the mirrored market draw.
        """
        if antithetic:
            return cls(seed=int(base_seed) + scenario_index // 2,
                       scenario_index=scenario_index,
                       mirrored=bool(scenario_index % 2))
        return cls(seed=int(base_seed) + scenario_index, scenario_index=scenario_index)

    def generator(self, stream):
        """Independent generator for one stream (market, LTC) of this scenario"""
        return np.random.default_rng(np.random.SeedSequence(self.seed, spawn_key=(stream,)))

    def market_rng(self):
        return self.generator(MARKET_STREAM)

    def ltc_rng(self):
        return self.generator(LTC_STREAM)


def random_base_seed():
    """Fresh base seed for runs configured without one"""
    return int(np.random.SeedSequence().entropy % (2 ** 32))
