"""Order Validator — nine pre-trade checks, run in order, first failure raises.

  1. freeze_quantity   quantity <= freeze limit for the underlying
  2. lot_size          quantity is a multiple of the lot size
  3. tick_size         price is a multiple of the tick size (tolerance 1e-3)
  4. price_band        price within ±price_band_pct of the reference price
  5. margin            premium × margin_multiplier <= account balance
  6. symbol            symbol matches the instrument record
  7. market_hours      market is open
  8. quantity_positive quantity > 0
  9. price_positive    price > 0
"""

from __future__ import annotations

import logging
from datetime import datetime

from fno_engine.config.engine_config import EngineConfig
from fno_engine.core.data_types import Instrument
from fno_engine.core.errors import (
    FreezeQuantityBreach,
    InsufficientMargin,
    InvalidParameter,
    MarketClosed,
    PriceBandBreach,
)
from fno_engine.core.types import Side

logger = logging.getLogger(__name__)

TICK_TOLERANCE = 1e-3


class OrderValidator:
    def __init__(self, config: EngineConfig, session_clock=None) -> None:
        self._config = config
        self._session = session_clock

    def validate(
        self,
        symbol: str,
        quantity: int,
        price: float,
        side: Side,
        instrument: Instrument,
        account_balance: float,
        reference_price: float | None = None,
        now: datetime | None = None,
    ) -> None:
        """Raise an OrderValidationError subclass naming the first failing check."""
        self.check_freeze_quantity(quantity, instrument.underlying)
        self.check_lot_size(quantity, instrument.lot_size)
        self.check_tick_size(price, instrument.tick_size)
        self.check_price_band(price, reference_price)
        self.check_margin(quantity, price, account_balance)
        self.check_symbol(symbol, instrument)
        self.check_market_hours(now)
        self.check_positive_quantity(quantity)
        self.check_positive_price(price)
        logger.debug("Order validated: %s %s %d @ %.2f", side.value, symbol, quantity, price)

    def check_freeze_quantity(self, quantity: int, underlying: str) -> None:
        limit = self._config.freeze_quantity_for(underlying)
        if quantity > limit:
            raise FreezeQuantityBreach(
                f"Quantity {quantity} exceeds freeze limit {limit} for {underlying}",
                check="freeze_quantity",
            )

    def check_lot_size(self, quantity: int, lot_size: int) -> None:
        if lot_size <= 0 or quantity % lot_size != 0:
            raise InvalidParameter(
                f"Quantity {quantity} is not a multiple of lot size {lot_size}",
                check="lot_size",
            )

    def check_tick_size(self, price: float, tick_size: float) -> None:
        remainder = abs(price % tick_size)
        if remainder > TICK_TOLERANCE and tick_size - remainder > TICK_TOLERANCE:
            raise InvalidParameter(
                f"Price {price} is not a multiple of tick size {tick_size}",
                check="tick_size",
            )

    def check_price_band(self, price: float, reference_price: float | None) -> None:
        if reference_price is None:
            return
        deviation = reference_price * self._config.price_band_pct / 100.0
        upper = reference_price + deviation
        lower = max(reference_price - deviation, 0.0)
        if price > upper or price < lower:
            raise PriceBandBreach(
                f"Price {price} outside bands [{lower:.2f}, {upper:.2f}]",
                check="price_band",
            )

    def check_margin(self, quantity: int, price: float, account_balance: float) -> None:
        required = quantity * price * self._config.margin_multiplier
        if required > account_balance:
            raise InsufficientMargin(
                f"Required: {required:.2f}, Available: {account_balance:.2f}",
                check="margin",
            )

    def check_symbol(self, symbol: str, instrument: Instrument) -> None:
        if symbol != instrument.symbol:
            raise InvalidParameter(
                f"Symbol mismatch: {symbol} != {instrument.symbol}",
                check="symbol",
            )

    def check_market_hours(self, now: datetime | None = None) -> None:
        if self._session is not None and not self._session.is_market_open(now):
            raise MarketClosed("Market is closed", check="market_hours")

    def check_positive_quantity(self, quantity: int) -> None:
        if quantity <= 0:
            raise InvalidParameter(
                f"Quantity must be positive, got {quantity}",
                check="quantity_positive",
            )

    def check_positive_price(self, price: float) -> None:
        if price <= 0:
            raise InvalidParameter(
                f"Price must be positive, got {price}",
                check="price_positive",
            )
