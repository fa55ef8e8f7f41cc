"""Orchestrator — wires the engine together and drives the trading day.

Initialization order:
  1. ConfigLoaded → 2. Token check / authenticate → 3. Instrument directory →
  4. Bar stores + aggregators → 5. Position restore from the event log →
  6. Readiness gate (historical sync, DATA_READY)

Cycle (every cycle_interval_sec while the market is open):
  1. Token expiry watch, VIX refresh, hourly bar gap recovery
  2. Daily analysis once past open + session_open_delay_min (bias persisted)
  3. At most once per hourly bar: technical exits, alignment, entry
  4. Mark positions to market, daily-loss check, pending exits
  5. EOD: flatten, write the trades file, reset daily state

Errors reaching the cycle boundary are handled by classification:
fatal → stop, requires_exit → flatten, anything else → log and continue.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Awaitable, Callable

from fno_engine.broker.instrument_directory import InstrumentDirectory
from fno_engine.broker.paper_broker import PaperBroker
from fno_engine.broker.rate_limiter import RateLimiters
from fno_engine.broker.tick_feed import TickFeed
from fno_engine.broker.token_store import TokenStore
from fno_engine.config.engine_config import EngineConfig
from fno_engine.core.data_types import EntrySignal, Event, Instrument, Position, Trade, utc_now
from fno_engine.core.errors import (
    AuthenticationFailed,
    ConfigError,
    DailyLossLimit,
    DeserializationError,
    FatalError,
    InstrumentNotFound,
    MarketClosed,
    MissingData,
    OrderPlacementFailed,
    OrderRejected,
    OrderValidationError,
    RecoveryFailed,
    RecoveryTimeout,
    RiskCheckFailed,
    TokenExpired,
    TokenRefreshFailed,
    TradingError,
    VixSpike,
    WebSocketError,
)
from fno_engine.core.event_bus import EventBus
from fno_engine.core.types import (
    Bias,
    EventKind,
    ExitReason,
    InstrumentKind,
    OptionType,
    Side,
    Timeframe,
)
from fno_engine.data.bar_aggregator import BarAggregator, MultiBarAggregator, bar_boundary
from fno_engine.data.bar_store import BarStore
from fno_engine.data.historical_sync import HistoricalSync
from fno_engine.data.tick_buffer import TickBuffer
from fno_engine.execution.order_manager import OrderManager, round_to_tick
from fno_engine.execution.order_validator import OrderValidator
from fno_engine.execution.position_manager import PositionManager
from fno_engine.reporting.trade_journal import TradeJournal
from fno_engine.risk.risk_manager import RiskManager
from fno_engine.session.session_clock import SessionClock
from fno_engine.session.trading_calendar import HolidayCalendar
from fno_engine.strategy.adx_strategy import AdxStrategy
from fno_engine.strategy.bias_scanner import BiasScanner, DailyBias
from fno_engine.strategy.hourly_crossover import CrossoverSignal, HourlyCrossoverMonitor
from fno_engine.strategy.premarket_selector import PremarketSelector
from fno_engine.utils.files import dated_name
from fno_engine.utils.idempotency import generate_key, new_session_id, order_key

logger = logging.getLogger(__name__)

_ERROR_EXIT_REASON = {
    VixSpike: ExitReason.VIX_SPIKE,
    DailyLossLimit: ExitReason.DAILY_LOSS_LIMIT,
    TokenExpired: ExitReason.TOKEN_EXPIRY,
    MarketClosed: ExitReason.SESSION_CLOSE,
}


def _bias_for(option_type: OptionType) -> Bias:
    return Bias.CALL if option_type is OptionType.CALL else Bias.PUT


class Orchestrator:
    def __init__(
        self,
        config: EngineConfig,
        gateway=None,
        instruments: InstrumentDirectory | None = None,
        calendar=None,
        vix_feed=None,
        token_store: TokenStore | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._clock = clock
        self._session_id = new_session_id()
        self._data_dir = Path(config.data_dir)

        if gateway is None:
            if not config.enable_paper_trading:
                raise ConfigError("Live trading needs a broker gateway; enable paper trading or supply one")
            gateway = PaperBroker(config.paper_slippage_bps, clock)
        self._gateway = gateway
        self._paper = isinstance(gateway, PaperBroker)
        self._vix_feed = vix_feed if vix_feed is not None else (gateway if self._paper else None)

        self._calendar = calendar or HolidayCalendar.load(config.holidays_file or None)
        self._session = SessionClock(config, self._calendar, clock)
        self._event_bus = event_bus or EventBus(
            self._data_dir / "events" / dated_name("events", self._session.local_date(), ".jsonl")
        )

        token_path = Path(config.token_file)
        if not token_path.is_absolute():
            token_path = self._data_dir / token_path
        self._token_store = token_store or TokenStore(token_path, clock)
        self._instruments = instruments or InstrumentDirectory(
            config.instruments_file or None, today=lambda: self._session.local_date()
        )
        self._limiters = RateLimiters(
            config.rate_limit_orders, config.rate_limit_market_data, config.rate_limit_historical
        )

        bars_dir = self._data_dir / "bars"
        self._daily_store = BarStore(config.underlying, Timeframe.D1, bars_dir, config.daily_bars_memory)
        self._hourly_store = BarStore(config.underlying, Timeframe.H1, bars_dir, config.hourly_bars_memory)
        self._tick_buffer = TickBuffer(config.tick_buffer_capacity)
        self._aggregators = MultiBarAggregator()
        self._historical = HistoricalSync(
            gateway, self._limiters.historical, self._event_bus, clock, config.recovery_timeout_sec
        )

        self._strategy = AdxStrategy(config, self._event_bus, clock)
        self._bias_scanner = BiasScanner(config.daily_adx_period, config.daily_adx_threshold)
        self._premarket = PremarketSelector(self._instruments)
        self._crossovers = HourlyCrossoverMonitor(config.hourly_adx_period, config.hourly_adx_threshold)
        self._positions = PositionManager(config, self._event_bus, clock)
        self._risk = RiskManager(config, self._positions, self._event_bus, clock=clock)
        self._positions.set_vix_provider(lambda: self._risk.current_vix)
        self._validator = OrderValidator(config, self._session)
        self._orders = OrderManager(
            config, gateway, self._event_bus, self._limiters.orders, sleep, clock
        )
        self._journal = TradeJournal(self._data_dir)

        self._feed: TickFeed | None = None
        self._feed_task: asyncio.Task | None = None
        self._spot_token = ""
        self._entry_bias: dict[str, Bias] = {}
        self._exit_attempts: dict[str, int] = {}
        self._exit_lock = asyncio.Lock()
        self._last_hourly_bar: datetime | None = None
        self._last_crossover: CrossoverSignal | None = None
        self._last_eod_date: date | None = None
        self._token_warned = False
        self._initialized = False
        self._stopped = False
        self._shutdown = asyncio.Event()
        self._cycles = 0

        self._event_bus.subscribe(EventKind.EXIT_SIGNAL_GENERATED, self._on_exit_signal)
        self._event_bus.subscribe(EventKind.POSITION_CLOSED, self._on_position_closed)

    # --- Accessors ---

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def is_paper(self) -> bool:
        return self._paper

    @property
    def gateway(self):
        return self._gateway

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def session(self) -> SessionClock:
        return self._session

    @property
    def strategy(self) -> AdxStrategy:
        return self._strategy

    @property
    def positions(self) -> PositionManager:
        return self._positions

    @property
    def risk(self) -> RiskManager:
        return self._risk

    @property
    def orders(self) -> OrderManager:
        return self._orders

    @property
    def journal(self) -> TradeJournal:
        return self._journal

    @property
    def instruments(self) -> InstrumentDirectory:
        return self._instruments

    @property
    def token_store(self) -> TokenStore:
        return self._token_store

    @property
    def daily_store(self) -> BarStore:
        return self._daily_store

    @property
    def hourly_store(self) -> BarStore:
        return self._hourly_store

    @property
    def aggregators(self) -> MultiBarAggregator:
        return self._aggregators

    @property
    def tick_buffer(self) -> TickBuffer:
        return self._tick_buffer

    @property
    def spot_token(self) -> str:
        return self._spot_token

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    # --- Lifecycle ---

    async def initialize(self) -> None:
        cfg = self._config
        await self._publish(EventKind.CONFIG_LOADED, {
            "session_id": self._session_id,
            "underlying": cfg.underlying,
            "paper": self._paper,
        })
        await self._ensure_session()

        count = await self._instruments.refresh()
        await self._publish(EventKind.INSTRUMENT_MASTER_DOWNLOADED, {"count": count})
        self._spot_token = self._resolve_spot_token()
        self._wire_aggregators()
        self._crossovers.register(cfg.underlying, self._spot_token, self._hourly_store)
        await self._publish(EventKind.STORAGE_READY, {"data_dir": str(self._data_dir)})

        self._restore_positions()
        await self._ensure_data_ready()

        today = self._session.local_date()
        trading_day = self._session.is_trading_day(today)
        await self._publish(EventKind.TRADING_DAY_CHECK, {
            "date": today.isoformat(),
            "trading_day": trading_day,
        })
        if not trading_day:
            logger.warning("%s is not a trading day; next open %s",
                           today, self._session.next_market_open().isoformat())
        self._initialized = True
        logger.info("Engine initialized (session %s, %s mode)",
                    self._session_id, "paper" if self._paper else "live")

    async def run(self) -> None:
        """Initialize and cycle until request_shutdown(); always ends with shutdown()."""
        await self._event_bus.start()
        try:
            await self.initialize()
            self._start_feed()
            while not self._shutdown.is_set():
                await self.run_cycle()
                try:
                    await asyncio.wait_for(
                        self._shutdown.wait(), timeout=self._config.cycle_interval_sec
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            await self.shutdown()

    def request_shutdown(self) -> None:
        if not self._shutdown.is_set():
            logger.info("Shutdown requested")
            self._shutdown.set()

    async def shutdown(self) -> None:
        """Flatten, persist the day's trades and stop the event bus. Runs once."""
        if self._stopped:
            return
        self._stopped = True
        self._shutdown.set()
        await self._publish(EventKind.GRACEFUL_SHUTDOWN_INITIATED, {
            "open_positions": self._positions.open_count,
        })
        try:
            await self._stop_feed()
            await self.flatten(ExitReason.GRACEFUL_SHUTDOWN)
            self._write_daily_artifacts(self._session.local_date())
            await self._publish(EventKind.SHUTDOWN_COMPLETED, {
                "trades": len(self._positions.daily_trades()),
                "daily_pnl": self._positions.daily_pnl,
            })
            logger.info("Shutdown complete (daily PnL %.2f)", self._positions.daily_pnl)
        finally:
            await self._event_bus.stop()

    # --- Cycle ---

    async def run_cycle(self, now: datetime | None = None) -> None:
        now = now or self._clock()
        self._cycles += 1
        if not self._session.is_market_open(now):
            today = self._session.local_date(now)
            if (
                self._session.is_trading_day(today)
                and self._session.is_eod(now)
                and self._last_eod_date != today
            ):
                await self.end_of_day(now)
            return
        try:
            await self._cycle_steps(now)
        except TradingError as e:
            await self._handle_cycle_error(e)

    async def _cycle_steps(self, now: datetime) -> None:
        await self._check_token(now)
        await self._refresh_vix()
        await self._recover_gaps(now)

        eod = self._session.is_eod(now)
        if not eod:
            await self._run_daily_analysis(now)
            await self._on_hourly_bar(now)

        await self._update_positions()
        await self._risk.check_daily_loss()
        await self._process_pending_exits()
        if self._positions.open_count:
            self._journal.write_positions(self._session.local_date(now), self._positions.open_positions())

        if eod:
            await self.end_of_day(now)

    async def _handle_cycle_error(self, e: TradingError) -> None:
        if e.is_fatal:
            logger.critical("[%s] fatal: %s", e.code, e.message)
            await self._publish(EventKind.FATAL_ERROR, {"code": e.code, "message": e.message})
            self.request_shutdown()
            raise e
        if e.requires_exit:
            reason = _ERROR_EXIT_REASON.get(type(e), ExitReason.MANUAL_FLATTEN)
            logger.critical("[%s] %s - flattening (%s)", e.code, e.message, reason.value)
            await self.flatten(reason)
        elif e.is_recoverable:
            logger.warning("[%s] %s - retrying next cycle", e.code, e.message)
        else:
            logger.error("[%s] cycle step failed: %s", e.code, e.message)

    async def end_of_day(self, now: datetime | None = None) -> None:
        now = now or self._clock()
        today = self._session.local_date(now)
        if self._last_eod_date == today:
            return
        self._last_eod_date = today
        logger.critical("EOD mandatory exit at %s: %d open positions",
                        self._session.local_now(now).strftime("%H:%M:%S"), self._positions.open_count)
        await self._publish(EventKind.EOD_MANDATORY_EXIT, {
            "date": today.isoformat(),
            "open_positions": self._positions.open_count,
        })
        await self.flatten(ExitReason.EOD_MANDATORY_EXIT)
        await self._aggregators.finalize_all()
        self._write_daily_artifacts(today)

        self._strategy.reset()
        self._risk.reset_daily()
        self._positions.reset_daily()
        self._journal.reset()
        self._orders.clear_completed()
        self._event_bus.clear_processed()
        self._entry_bias.clear()
        self._exit_attempts.clear()
        self._last_hourly_bar = None
        self._crossovers.clear()
        self._last_crossover = None

    async def flatten(self, reason: ExitReason = ExitReason.MANUAL_FLATTEN) -> list[Trade]:
        """Exit every open position with a mandatory reason."""
        open_positions = self._positions.open_positions()
        if reason is ExitReason.MANUAL_FLATTEN:
            await self._publish(EventKind.KILL_SWITCH_ACTIVATED, {
                "reason": reason.value,
                "positions": [p.position_id for p in open_positions],
            })
        if not open_positions:
            return []
        logger.critical("Flattening %d positions: %s", len(open_positions), reason.value)
        for p in open_positions:
            self._positions.submit_exit(p.position_id, reason)
        trades = await self._process_pending_exits()
        if self._positions.open_count:
            logger.critical(
                "%d positions without a confirmed exit fill; closing at last mark",
                self._positions.open_count,
            )
            trades.extend(await self._positions.close_all(reason))
        return trades

    # --- Initialization steps ---

    async def _ensure_session(self) -> None:
        store = self._token_store
        try:
            tokens = store.load()
        except DeserializationError as e:
            logger.warning("[%s] %s", e.code, e.message)
            await self._publish(EventKind.TOKEN_INVALID, {"reason": "corrupt"})
            tokens = None

        if tokens is not None and store.is_valid():
            await self._publish(EventKind.TOKEN_LOADED, {
                "access_expiry": tokens.access_expiry.isoformat(),
            })
        else:
            if tokens is None:
                await self._publish(EventKind.TOKEN_NOT_FOUND, {"path": str(store.path)})
            else:
                await self._publish(EventKind.TOKEN_INVALID, {"reason": "expired"})
            await self._publish(EventKind.LOGIN_API_CALLED, {})
            try:
                fresh = await self._gateway.authenticate()
            except TradingError as e:
                raise AuthenticationFailed(f"Broker login failed: {e.message}") from e
            if fresh is not None:
                store.save(fresh)
                await self._publish(EventKind.TOKENS_STORED, {
                    "access_expiry": fresh.access_expiry.isoformat(),
                })
        await self._publish(EventKind.BROKER_CLIENT_READY, {"paper": self._paper})

    def _resolve_spot_token(self) -> str:
        name = self._config.underlying
        try:
            return self._instruments.underlying_token(name)
        except InstrumentNotFound:
            if not self._paper:
                raise
        inst = Instrument(
            token=f"PAPER-{name.upper()}",
            symbol=name.upper(),
            underlying=name.upper(),
            kind=InstrumentKind.INDEX,
            exchange_segment=self._config.exchange,
        )
        self._instruments.register(inst)
        return inst.token

    def _wire_aggregators(self) -> None:
        if self._aggregators.aggregators:
            return
        for store in (self._hourly_store, self._daily_store):
            store.load()
            self._aggregators.add(BarAggregator(
                self._config.underlying,
                store.timeframe,
                store,
                event_bus=self._event_bus,
                token=self._spot_token,
                clock=self._clock,
            ))

    def _restore_positions(self) -> None:
        """Rebuild open positions and the day's closed trades from today's event log."""
        events = self._event_bus.replay()
        restored = PositionManager.rebuild_from_events(events)
        if restored:
            self._positions.restore(restored)
            for p in restored:
                self._entry_bias[p.position_id] = _bias_for(p.option_type)

        for trade in self._positions.restore_trades(PositionManager.trades_from_events(events)):
            self._journal.log_trade(trade)
            self._risk.record_trade_result(trade.net_pnl)

    async def _ensure_data_ready(self) -> None:
        cfg = self._config
        needs = (
            (self._daily_store, cfg.daily_adx_period + 1, timedelta(days=cfg.daily_sync_lookback_days)),
            (self._hourly_store, cfg.hourly_adx_period + 1, timedelta(days=cfg.hourly_sync_lookback_days)),
        )
        for store, minimum, lookback in needs:
            if len(store.recent(minimum)) >= minimum:
                continue
            logger.info("%s %s: fewer than %d bars, syncing history",
                        store.symbol, store.timeframe.value, minimum)
            try:
                await self._historical.sync(self._spot_token, store, lookback)
            except TradingError as e:
                logger.warning("[%s] history sync failed: %s", e.code, e.message)
            have = len(store.recent(minimum))
            if have < minimum:
                raise FatalError(
                    f"{store.symbol} {store.timeframe.value}: {have} bars after sync, need {minimum}"
                )
        await self._publish(EventKind.DATA_READY, {
            "daily_bars": self._daily_store.memory_count,
            "hourly_bars": self._hourly_store.memory_count,
        })

    def _start_feed(self) -> None:
        if self._feed_task is not None:
            return
        self._feed = TickFeed(
            self._config, self._gateway, self._tick_buffer, self._aggregators,
            self._event_bus, clock=self._clock,
        )
        self._feed_task = asyncio.create_task(self._run_feed([self._spot_token]))

    async def _run_feed(self, tokens: list[str]) -> None:
        try:
            await self._feed.run(tokens, self._config.exchange)
        except WebSocketError as e:
            logger.error("[%s] %s - bars now come from gap recovery only", e.code, e.message)
        except TradingError as e:
            logger.error("[%s] tick feed stopped: %s - bars now come from gap recovery only",
                         e.code, e.message)
        except Exception:
            logger.exception("Tick feed crashed - bars now come from gap recovery only")

    async def _stop_feed(self) -> None:
        """Stop the tick feed; a failed feed task never blocks shutdown."""
        if self._feed is not None:
            self._feed.stop()
        task, self._feed_task = self._feed_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Tick feed task ended with an error")

    # --- Cycle steps ---

    async def _check_token(self, now: datetime) -> None:
        cfg = self._config
        store = self._token_store
        remaining = store.time_to_expiry(now)
        if remaining is None:
            return
        if store.needs_refresh(now, cfg.token_expiry_warning_min):
            if not self._token_warned:
                self._token_warned = True
                logger.warning("Session token expires in %.0f s", remaining.total_seconds())
                await self._publish(EventKind.TOKEN_EXPIRY_WARNING, {
                    "expires_in_sec": remaining.total_seconds(),
                })
            if await self._refresh_token():
                return
        if remaining.total_seconds() <= -cfg.token_grace_to_flatten_sec:
            logger.critical("Session token expired %.0f s ago", -remaining.total_seconds())
            await self.flatten(ExitReason.TOKEN_EXPIRY)
            raise TokenRefreshFailed("Session token expired and could not be refreshed")

    async def _refresh_token(self) -> bool:
        await self._publish(EventKind.TOKEN_REFRESH_STARTED, {})
        try:
            fresh = await self._gateway.authenticate()
        except TradingError as e:
            logger.error("[%s] token refresh failed: %s", e.code, e.message)
            await self._publish(EventKind.TOKEN_REFRESH_FAILED, {"code": e.code, "error": e.message})
            return False
        if fresh is None:
            await self._publish(EventKind.TOKEN_REFRESH_FAILED, {"error": "no tokens issued"})
            return False
        self._token_store.save(fresh)
        self._token_warned = False
        await self._publish(EventKind.TOKEN_REFRESH_SUCCESS, {
            "access_expiry": fresh.access_expiry.isoformat(),
        })
        return True

    async def _refresh_vix(self) -> None:
        if self._vix_feed is None:
            return
        vix = await self._vix_feed.latest()
        if vix is not None:
            await self._risk.update_vix(vix)

    async def _recover_gaps(self, now: datetime) -> None:
        cfg = self._config
        stale = set(self._aggregators.check_all_gaps(cfg.data_gap_threshold_sec))
        for agg in self._aggregators.aggregators:
            if agg.timeframe is Timeframe.D1 or (agg.symbol, agg.timeframe) not in stale:
                continue
            if not self._bar_missing(agg.store, now):
                continue
            last = agg.store.last()
            since = last.timestamp if last else now - timedelta(days=cfg.hourly_sync_lookback_days)
            logger.warning("%s %s: bar missing since %s, recovering",
                           agg.symbol, agg.timeframe.value, since.isoformat())
            await self._publish(EventKind.DATA_GAP_DETECTED, {
                "symbol": agg.symbol,
                "timeframe": agg.timeframe.value,
                "since": since.isoformat(),
            })
            try:
                await self._historical.recover_gap(agg.token, agg.store, since)
            except (RecoveryFailed, RecoveryTimeout) as e:
                logger.warning("[%s] %s", e.code, e.message)

    def _bar_missing(self, store: BarStore, now: datetime) -> bool:
        """True when the latest bar that should be complete by ``now`` is not stored."""
        tf = store.timeframe
        ready_by = now - timedelta(seconds=tf.seconds + self._config.bar_ready_grace_sec)
        expected = bar_boundary(ready_by, tf, self._session.tz)
        open_utc, _ = self._session.session_window(self._session.local_date(now))
        if expected < bar_boundary(open_utc, tf, self._session.tz):
            return False
        last = store.last()
        return last is None or last.timestamp < expected

    async def _run_daily_analysis(self, now: datetime) -> None:
        if self._strategy.daily_analysis_done or not self._session.is_past_open_delay(now):
            return
        bars = self._daily_store.recent(self._config.daily_lookback_bars)
        bias = await self._strategy.analyze_daily(bars)
        reading = self._strategy.daily_reading
        today = self._session.local_date(now)
        daily = DailyBias(
            underlying=self._config.underlying,
            spot_token=self._spot_token,
            bias=bias,
            adx=reading.adx,
            plus_di=reading.plus_di,
            minus_di=reading.minus_di,
            close_price=bars[-1].close,
            timestamp=bars[-1].timestamp,
        )
        self._bias_scanner.write([daily], self._data_dir, today)

        option = self._premarket.select(daily, today)
        if option is not None:
            self._premarket.write([option], self._data_dir, today)

    async def _on_hourly_bar(self, now: datetime) -> None:
        last = self._hourly_store.last()
        if last is None or last.timestamp == self._last_hourly_bar:
            return
        if not self._strategy.daily_analysis_done:
            return
        self._last_hourly_bar = last.timestamp
        bars = self._hourly_store.recent(self._config.hourly_lookback_bars)
        if self._strategy.bias is not None:
            signal = self._crossovers.check(self._spot_token, self._strategy.bias)
            if signal is not None:
                self._last_crossover = signal

        for p in self._positions.open_positions():
            bias = self._entry_bias.get(p.position_id, _bias_for(p.option_type))
            if await self._strategy.check_technical_exit(bias, bars, p.position_id):
                self._positions.submit_exit(p.position_id, ExitReason.ALIGNMENT_LOST)

        if self._strategy.bias in (None, Bias.NO_TRADE):
            return
        await self._strategy.analyze_hourly(bars)
        await self._try_entry(bars, now)

    async def _try_entry(self, bars, now: datetime) -> Position | None:
        if not self._session.is_in_entry_window(now):
            return None
        vix = self._risk.current_vix
        if vix is None:
            logger.warning("No VIX reading yet; entry evaluation skipped")
            return None
        spot = await self._ltp(self._spot_token)
        signal = await self._strategy.evaluate_entry(bars, spot, vix, now)
        if signal is None:
            return None
        try:
            await self._risk.pre_entry_check()
        except RiskCheckFailed as e:
            logger.info("Entry skipped (%s): %s", e.check, e.message)
            return None
        try:
            return await self._enter(signal, now)
        except OrderValidationError as e:
            logger.warning("[%s] order validation failed (%s): %s", e.code, e.check, e.message)
        except (OrderRejected, OrderPlacementFailed, InstrumentNotFound) as e:
            logger.error("[%s] entry failed: %s", e.code, e.message)
        return None

    async def _enter(self, signal: EntrySignal, now: datetime) -> Position:
        cfg = self._config
        expiry = self._session.next_expiry(self._session.local_date(now))
        inst = self._resolve_option(signal.underlying, signal.strike, signal.option_type, expiry)
        premium = await self._ltp(inst.token)
        price = round_to_tick(premium, inst.tick_size)
        quantity = self._risk.position_size(
            self._session.days_to_expiry(now),
            inst.lot_size,
            cfg.freeze_quantity_for(signal.underlying),
        )
        self._validator.validate(
            inst.symbol, quantity, price, Side.BUY, inst,
            account_balance=self._available_capital(),
            reference_price=premium,
            now=now,
        )

        key = order_key(
            self._session_id, signal.underlying, signal.option_type.value, signal.strike, signal.timestamp
        )
        order_id = await self._orders.place_order(
            inst.symbol, inst.token, Side.BUY, quantity, price, key, inst.tick_size
        )
        fill_price, fill_qty = await self._confirm_fill(order_id)

        position = self._positions.create_position(
            symbol=inst.symbol,
            underlying=signal.underlying,
            strike=signal.strike,
            option_type=signal.option_type,
            quantity=fill_qty,
            entry_price=fill_price,
            token=inst.token,
            underlying_entry=signal.underlying_ltp,
            entry_reason=signal.reason,
            idempotency_key=key,
            order_id=order_id,
            entry_time=now,
        )
        await self._positions.open(position)
        self._entry_bias[position.position_id] = signal.bias
        return position

    def _resolve_option(
        self, underlying: str, strike: float, option_type: OptionType, expiry: date
    ) -> Instrument:
        try:
            return self._instruments.option_instrument(underlying, strike, option_type, expiry)
        except InstrumentNotFound:
            if not self._paper:
                raise
        name = underlying.upper()
        symbol = f"{name}{expiry:%d%b%y}{strike:.0f}{option_type.value}".upper()
        inst = Instrument(
            token=f"PAPER-{symbol}",
            symbol=symbol,
            underlying=name,
            kind=InstrumentKind.INDEX_OPT,
            lot_size=self._config.lot_size_for(name),
            tick_size=self._config.tick_size,
            expiry=expiry,
            strike=strike,
            option_type=option_type,
        )
        self._instruments.register(inst)
        return inst

    async def _update_positions(self) -> None:
        for p in self._positions.open_positions():
            try:
                price = await self._ltp(p.token)
            except (MissingData, OSError) as e:
                logger.warning("No price for %s: %s", p.symbol, e)
                continue
            reason = await self._positions.update(p.position_id, price)
            if reason is not None:
                self._positions.submit_exit(p.position_id, reason)

    async def _process_pending_exits(self) -> list[Trade]:
        async with self._exit_lock:
            exit_prices: dict[str, float] = {}
            for position_id in self._positions.pending_exit_ids():
                position = self._positions.get(position_id)
                if position is None:
                    continue
                price = await self._send_exit_order(position)
                if price is not None:
                    exit_prices[position_id] = price
            if not exit_prices:
                return []
            return await self._positions.process_exits(exit_prices)

    async def _send_exit_order(self, position: Position) -> float | None:
        attempt = self._exit_attempts.get(position.position_id, 0)
        key = generate_key(self._session_id, position.position_id, "EXIT", attempt)
        tick = self._config.tick_size
        try:
            order_id = await self._orders.place_order(
                position.symbol, position.token, Side.SELL, position.quantity,
                round_to_tick(position.current_price, tick), key, tick,
            )
        except (OrderRejected, OrderPlacementFailed) as e:
            self._exit_attempts[position.position_id] = attempt + 1
            logger.error("[%s] exit order for %s failed: %s", e.code, position.symbol, e.message)
            return None
        fill_price, _ = await self._confirm_fill(order_id)
        return fill_price

    async def _confirm_fill(self, order_id: str) -> tuple[float, int]:
        """Fill price and quantity for a placed order (paper fills are immediate)."""
        order = self._orders.get_order(order_id)
        if order.status.is_terminal and order.fill_price is not None:
            return order.fill_price, order.fill_quantity
        fill = self._gateway.fill_for(order.broker_order_id) if self._paper else None
        if fill is not None:
            price, quantity = fill.price, fill.quantity
        else:
            price, quantity = order.current_limit_price, order.quantity
        await self._orders.mark_executed(order_id, price, quantity)
        return price, quantity

    async def _ltp(self, token: str) -> float:
        await self._limiters.market_data.acquire()
        return await self._gateway.ltp(token)

    def _available_capital(self) -> float:
        return self._risk.start_capital + self._positions.daily_pnl

    def _write_daily_artifacts(self, day: date) -> None:
        trades = self._positions.daily_trades()
        if trades:
            self._journal.write_trades(day, trades)

    # --- Event handlers ---

    async def _on_exit_signal(self, event: Event) -> None:
        payload = event.payload
        try:
            reason = ExitReason(payload["primary_reason"])
        except (KeyError, ValueError):
            logger.warning("Exit signal with unknown reason ignored: %s", payload)
            return
        if self._positions.submit_exit(payload.get("position_id", ""), reason):
            await self._process_pending_exits()

    def _on_position_closed(self, event: Event) -> None:
        trade = Trade.from_dict(event.payload)
        self._journal.log_trade(trade)
        self._risk.record_trade_result(trade.net_pnl)
        self._entry_bias.pop(trade.position_id, None)
        self._exit_attempts.pop(trade.position_id, None)

    # --- Status ---

    def status(self) -> dict:
        now = self._clock()
        return {
            "session_id": self._session_id,
            "mode": "paper" if self._paper else "live",
            "initialized": self._initialized,
            "shutdown_requested": self._shutdown.is_set(),
            "cycles": self._cycles,
            "underlying": self._config.underlying,
            "local_time": self._session.local_now(now).isoformat(),
            "market_open": self._session.is_market_open(now),
            "in_entry_window": self._session.is_in_entry_window(now),
            "strategy": self._strategy.snapshot(),
            "open_positions": self._positions.open_count,
            "daily_pnl": self._positions.daily_pnl,
            "trade_count": len(self._positions.daily_trades()),
            "current_vix": self._risk.current_vix,
            "circuit_breaker_active": self._risk.circuit_breaker_active,
            "last_hourly_bar": self._last_hourly_bar.isoformat() if self._last_hourly_bar else None,
            "last_crossover": self._last_crossover.to_dict() if self._last_crossover else None,
        }

    async def _publish(self, kind: EventKind, payload: dict) -> None:
        await self._event_bus.publish(
            Event.create(kind, payload, source="Orchestrator", timestamp=self._clock())
        )
