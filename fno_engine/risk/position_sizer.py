"""Position sizing scaled by VIX and days-to-expiry.

quantity = floor(capital × base_pct/100 × vix_mult × dte_mult / lot) × lot,
at least one lot and never above the largest lot multiple within the freeze limit.
"""

from __future__ import annotations

import logging
import math

from fno_engine.config.engine_config import EngineConfig

logger = logging.getLogger(__name__)


def _lerp(a: float, b: float, t: float) -> float:
    return a * (1.0 - t) + b * t


class PositionSizer:
    def __init__(self, config: EngineConfig) -> None:
        self._config = config

    def vix_multiplier(self, vix: float) -> float:
        """Piecewise linear between the anchors at VIX 12, 20 and 30; flat outside."""
        a = self._config.vix_mult_anchors
        if vix <= 12.0:
            return a["vix_12_or_below"]
        if vix <= 20.0:
            return _lerp(a["vix_12_or_below"], a["vix_20"], (vix - 12.0) / 8.0)
        if vix <= 30.0:
            return _lerp(a["vix_20"], a["vix_30"], (vix - 20.0) / 10.0)
        return a["vix_30_or_above"]

    def dte_multiplier(self, days_to_expiry: int) -> float:
        m = self._config.dte_mult
        if days_to_expiry >= 5:
            return m["gte_5_days"]
        if days_to_expiry >= 2:
            return m["days_2_to_4"]
        return m["day_1"]

    def size(
        self,
        capital: float,
        vix: float,
        days_to_expiry: int,
        lot_size: int,
        freeze_limit: int | None = None,
    ) -> int:
        vm = self.vix_multiplier(vix)
        dm = self.dte_multiplier(days_to_expiry)
        notional = capital * self._config.base_position_size_pct / 100.0 * vm * dm
        quantity = max(math.floor(notional / lot_size), 1) * lot_size
        if freeze_limit is not None:
            cap = (freeze_limit // lot_size) * lot_size
            if cap >= lot_size:
                quantity = min(quantity, cap)
        logger.info(
            "Position size: VIX=%.1f (mult=%.2f), DTE=%d (mult=%.2f) → %d qty",
            vix, vm, days_to_expiry, dm, quantity,
        )
        return quantity
