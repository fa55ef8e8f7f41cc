"""Order Manager — idempotent placement with bounded retry, backoff and price walk.

place_order():
  1. Known idempotency key → return the existing order id, no broker call
  2. Allocate the order (PENDING) and register its key, publish ORDER_INTENT_CREATED
  3. Attempt 0..max_retries; before each retry publish ORDER_RETRYING, sleep the
     backoff and walk the limit price by the next step of the ladder
  4. Success → SUBMITTED + ORDER_PLACED; final failure → FAILED + ORDER_FAILED
  5. Anything else escaping the loop (including cancellation) → a PENDING order is FAILED

Broker rejections (OrderRejected) are final and are not retried.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable

from fno_engine.broker.rate_limiter import TokenBucket
from fno_engine.config.engine_config import EngineConfig
from fno_engine.core.data_types import Event, Order, OrderIntent, utc_now
from fno_engine.core.errors import (
    OrderNotFound,
    OrderPlacementFailed,
    OrderRejected,
    TradingError,
)
from fno_engine.core.types import EventKind, OrderStatus, OrderType, Side

logger = logging.getLogger(__name__)


def round_to_tick(price: float, tick_size: float) -> float:
    return round(round(price / tick_size) * tick_size, 2)


class OrderManager:
    def __init__(
        self,
        config: EngineConfig,
        gateway,
        event_bus=None,
        rate_limiter: TokenBucket | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config
        self._gateway = gateway
        self._event_bus = event_bus
        self._limiter = rate_limiter
        self._sleep = sleep
        self._clock = clock

        self._orders: dict[str, Order] = {}
        self._by_key: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def place_order(
        self,
        symbol: str,
        token: str,
        side: Side,
        quantity: int,
        initial_price: float,
        idempotency_key: str,
        tick_size: float | None = None,
    ) -> str:
        """Place a limit order and return the engine order id."""
        async with self._lock:
            existing = self._by_key.get(idempotency_key)
            if existing is not None:
                logger.info("Order already processed for key %s: %s", idempotency_key[:12], existing)
                return existing

            order_id = str(uuid.uuid4())
            intent = OrderIntent(
                intent_id=order_id,
                symbol=symbol,
                token=token,
                side=side,
                quantity=quantity,
                initial_limit_price=initial_price,
                idempotency_key=idempotency_key,
            )
            order = Order.from_intent(order_id, intent, self._clock())
            self._orders[order_id] = order
            self._by_key[idempotency_key] = order_id

        await self._publish(EventKind.ORDER_INTENT_CREATED, {
            "order_id": order_id,
            "symbol": symbol,
            "side": side.value,
            "quantity": quantity,
            "price": initial_price,
            "idempotency_key": idempotency_key,
        })

        try:
            return await self._submit(order, tick_size or self._config.tick_size)
        except asyncio.CancelledError:
            if order.status is OrderStatus.PENDING:
                self._abandon(order, "placement cancelled")
            raise
        except Exception as e:
            if order.status is OrderStatus.PENDING:
                self._abandon(order, str(e) or type(e).__name__)
                await self._publish(EventKind.ORDER_FAILED, {
                    "order_id": order_id,
                    "reason": order.last_error,
                    "attempts": order.attempts,
                })
            raise

    async def _submit(self, order: Order, tick: float) -> str:
        """Attempt loop for one allocated order; leaves it SUBMITTED, REJECTED or FAILED."""
        order_id = order.order_id
        symbol, token, side, quantity = order.symbol, order.token, order.side, order.quantity
        initial_price = order.initial_limit_price
        max_retries = self._config.order_max_retries
        price = initial_price

        for attempt in range(max_retries + 1):
            if attempt > 0:
                backoff = self._backoff(attempt)
                await self._publish(EventKind.ORDER_RETRYING, {
                    "order_id": order_id,
                    "attempt": attempt,
                    "max_retries": max_retries,
                    "backoff_sec": backoff,
                })
                await self._sleep(backoff)
                price = self._walk_price(initial_price, side, attempt, price, tick)
                logger.info("Retry %d for order %s: limit %.2f", attempt, order_id, price)

            order.attempts += 1
            order.current_limit_price = price
            order.updated_at = self._clock()

            if self._limiter is not None:
                await self._limiter.acquire()
            try:
                broker_order_id = await self._gateway.place_order(
                    symbol, token, side, OrderType.LIMIT, quantity, price
                )
            except OrderRejected as e:
                await self._reject(order, e.message or str(e))
                raise
            except (TradingError, OSError, asyncio.TimeoutError) as e:
                order.last_error = str(e)
                logger.warning(
                    "Order placement failed (attempt %d/%d) for %s: %s",
                    attempt + 1, max_retries + 1, order_id, e,
                )
                if attempt == max_retries:
                    order.status = OrderStatus.FAILED
                    order.updated_at = self._clock()
                    await self._publish(EventKind.ORDER_FAILED, {
                        "order_id": order_id,
                        "reason": str(e),
                        "attempts": order.attempts,
                    })
                    raise OrderPlacementFailed(
                        f"Order {order_id} failed after {order.attempts} attempts: {e}",
                        order_id=order_id,
                    ) from e
                continue

            order.broker_order_id = broker_order_id
            order.status = OrderStatus.SUBMITTED
            order.updated_at = self._clock()
            await self._publish(EventKind.ORDER_PLACED, {
                "order_id": order_id,
                "broker_order_id": broker_order_id,
                "symbol": symbol,
                "side": side.value,
                "quantity": quantity,
                "price": price,
                "attempts": order.attempts,
            })
            logger.info(
                "Order placed: %s %s %d @ %.2f (%s)", side.value, symbol, quantity, price, order_id
            )
            return order_id

        raise OrderPlacementFailed(f"Max retries exceeded for {order_id}", order_id=order_id)

    async def mark_executed(
        self,
        order_id: str,
        fill_price: float,
        fill_quantity: int,
        fill_time: datetime | None = None,
    ) -> Order:
        order = self.get_order(order_id)
        if order.status.is_terminal:
            logger.warning("Fill for terminal order %s (%s) ignored", order_id, order.status.value)
            return order
        order.fill_price = fill_price
        order.fill_quantity = fill_quantity
        order.fill_time = fill_time or self._clock()
        order.status = (
            OrderStatus.FILLED if fill_quantity >= order.quantity else OrderStatus.PARTIALLY_FILLED
        )
        order.updated_at = self._clock()
        await self._publish(EventKind.ORDER_EXECUTED, {
            "order_id": order_id,
            "broker_order_id": order.broker_order_id,
            "symbol": order.symbol,
            "fill_price": fill_price,
            "fill_quantity": fill_quantity,
            "status": order.status.value,
        })
        logger.info(
            "Order %s %s: %d @ %.2f", order_id, order.status.value, fill_quantity, fill_price
        )
        return order

    async def mark_rejected(self, order_id: str, reason: str) -> Order:
        order = self.get_order(order_id)
        if not order.status.is_terminal:
            await self._reject(order, reason)
        return order

    def get_order(self, order_id: str) -> Order:
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFound(f"Unknown order {order_id}", order_id=order_id)
        return order

    def order_id_for(self, idempotency_key: str) -> str | None:
        return self._by_key.get(idempotency_key)

    def active_orders(self) -> list[Order]:
        return [o for o in self._orders.values() if not o.status.is_terminal]

    def all_orders(self) -> list[Order]:
        return list(self._orders.values())

    def clear_completed(self) -> int:
        """Drop terminal orders from tracking; their idempotency keys stay registered."""
        done = [oid for oid, o in self._orders.items() if o.status.is_terminal]
        for oid in done:
            del self._orders[oid]
        return len(done)

    def _backoff(self, attempt: int) -> float:
        schedule = self._config.order_retry_backoffs_sec
        if not schedule:
            return 0.0
        return schedule[min(attempt - 1, len(schedule) - 1)]

    def _walk_price(
        self, initial: float, side: Side, attempt: int, current: float, tick: float
    ) -> float:
        steps = self._config.order_retry_steps_pct
        if attempt > len(steps):
            return current
        step = steps[attempt - 1] / 100.0
        walked = initial * (1 + step) if side is Side.BUY else initial * (1 - step)
        return round_to_tick(walked, tick)

    def _abandon(self, order: Order, reason: str) -> None:
        order.status = OrderStatus.FAILED
        order.last_error = reason
        order.updated_at = self._clock()
        logger.error("Order %s abandoned: %s", order.order_id, reason)

    async def _reject(self, order: Order, reason: str) -> None:
        order.status = OrderStatus.REJECTED
        order.last_error = reason
        order.updated_at = self._clock()
        logger.warning("Order %s rejected: %s", order.order_id, reason)
        await self._publish(EventKind.ORDER_REJECTED, {
            "order_id": order.order_id,
            "symbol": order.symbol,
            "reason": reason,
        })

    async def _publish(self, kind: EventKind, payload: dict) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(
                Event.create(kind, payload, source="OrderManager", timestamp=self._clock())
            )
