"""Core enums used across the F&O engine."""

from enum import Enum, IntEnum, auto


class Side(Enum):
    BUY = "BUY"
    SELL = "SELL"


class OptionType(Enum):
    CALL = "CE"
    PUT = "PE"


class OrderType(Enum):
    LIMIT = "LIMIT"
    MARKET = "MARKET"


class OrderStatus(Enum):
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (
            OrderStatus.FILLED,
            OrderStatus.REJECTED,
            OrderStatus.CANCELLED,
            OrderStatus.FAILED,
        )


class PositionStatus(Enum):
    OPEN = "OPEN"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


class Bias(Enum):
    CALL = "CE"
    PUT = "PE"
    NO_TRADE = "NO_TRADE"

    @property
    def option_type(self) -> OptionType | None:
        if self is Bias.CALL:
            return OptionType.CALL
        if self is Bias.PUT:
            return OptionType.PUT
        return None


class StrategyState(Enum):
    IDLE = auto()
    DAILY_DIRECTION_SET = auto()
    HOURLY_ALIGNED = auto()
    SIGNAL_ARMED = auto()


class SessionState(Enum):
    PREOPEN = "PREOPEN"
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    POST_MARKET = "POST_MARKET"


class InstrumentKind(Enum):
    INDEX = "INDEX"
    STOCK = "STOCK"
    INDEX_FUT = "FUTIDX"
    STOCK_FUT = "FUTSTK"
    INDEX_OPT = "OPTIDX"
    STOCK_OPT = "OPTSTK"


class Timeframe(Enum):
    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    H1 = "1h"
    D1 = "1d"

    @property
    def minutes(self) -> int:
        return _TIMEFRAME_MINUTES[self]

    @property
    def seconds(self) -> int:
        return self.minutes * 60


_TIMEFRAME_MINUTES = {
    Timeframe.M1: 1,
    Timeframe.M5: 5,
    Timeframe.M15: 15,
    Timeframe.H1: 60,
    Timeframe.D1: 1440,
}


class ExitPriority(IntEnum):
    """Lower value wins when several exits compete for one position."""

    MANDATORY = 1
    RISK = 2
    PROFIT = 3
    TECHNICAL = 4


class ExitReason(Enum):
    STOP_LOSS = "STOP_LOSS"
    TRAILING_STOP = "TRAILING_STOP"
    TARGET = "TARGET"
    ALIGNMENT_LOST = "ALIGNMENT_LOST"
    VIX_SPIKE = "VIX_SPIKE"
    DAILY_LOSS_LIMIT = "DAILY_LOSS_LIMIT"
    EOD_MANDATORY_EXIT = "EOD_MANDATORY_EXIT"
    SESSION_CLOSE = "SESSION_CLOSE"
    TOKEN_EXPIRY = "TOKEN_EXPIRY"
    MANUAL_FLATTEN = "MANUAL_FLATTEN"
    GRACEFUL_SHUTDOWN = "GRACEFUL_SHUTDOWN"

    @property
    def priority(self) -> ExitPriority:
        return _EXIT_PRIORITY.get(self, ExitPriority.MANDATORY)


_EXIT_PRIORITY = {
    ExitReason.STOP_LOSS: ExitPriority.RISK,
    ExitReason.TARGET: ExitPriority.PROFIT,
    ExitReason.TRAILING_STOP: ExitPriority.TECHNICAL,
    ExitReason.ALIGNMENT_LOST: ExitPriority.TECHNICAL,
}


class EventKind(Enum):
    # Initialization
    LOG_INITIALIZED = "LOG_INITIALIZED"
    CONFIG_LOADED = "CONFIG_LOADED"
    CREDENTIALS_LOADED = "CREDENTIALS_LOADED"
    TOKEN_LOADED = "TOKEN_LOADED"
    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    TOKEN_INVALID = "TOKEN_INVALID"
    TOKEN_EXPIRY_WARNING = "TOKEN_EXPIRY_WARNING"
    TOKEN_REFRESH_STARTED = "TOKEN_REFRESH_STARTED"
    TOKEN_REFRESH_SUCCESS = "TOKEN_REFRESH_SUCCESS"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    TOKENS_STORED = "TOKENS_STORED"
    TOKEN_MONITOR_ACTIVE = "TOKEN_MONITOR_ACTIVE"
    LOGIN_API_CALLED = "LOGIN_API_CALLED"
    BROKER_CLIENT_READY = "BROKER_CLIENT_READY"
    INSTRUMENT_MASTER_DOWNLOADED = "INSTRUMENT_MASTER_DOWNLOADED"
    STORAGE_READY = "STORAGE_READY"
    # Session
    CALENDAR_VALIDATED = "CALENDAR_VALIDATED"
    TRADING_DAY_CHECK = "TRADING_DAY_CHECK"
    MARKET_SESSION_DETERMINED = "MARKET_SESSION_DETERMINED"
    MARKET_OPEN = "MARKET_OPEN"
    SESSION_REVALIDATION_REQUIRED = "SESSION_REVALIDATION_REQUIRED"
    ENTRY_WINDOW_OPEN = "ENTRY_WINDOW_OPEN"
    # Data
    WEBSOCKET_CONNECTED = "WEBSOCKET_CONNECTED"
    WEBSOCKET_DISCONNECTED = "WEBSOCKET_DISCONNECTED"
    SUBSCRIPTIONS_INITIALIZED = "SUBSCRIPTIONS_INITIALIZED"
    TICK_RECEIVED = "TICK_RECEIVED"
    BAR_READY = "BAR_READY"
    DATA_READY = "DATA_READY"
    DATA_GAP_DETECTED = "DATA_GAP_DETECTED"
    DATA_GAP_RECOVERY_REQUIRED = "DATA_GAP_RECOVERY_REQUIRED"
    RECOVERY_STARTED = "RECOVERY_STARTED"
    RECOVERY_COMPLETED = "RECOVERY_COMPLETED"
    RECOVERY_FAILED = "RECOVERY_FAILED"
    # Strategy
    DAILY_ANALYSIS_REQUIRED = "DAILY_ANALYSIS_REQUIRED"
    DAILY_DIRECTION_DETERMINED = "DAILY_DIRECTION_DETERMINED"
    NO_TRADE_MODE_ACTIVE = "NO_TRADE_MODE_ACTIVE"
    HOURLY_ANALYSIS_REQUIRED = "HOURLY_ANALYSIS_REQUIRED"
    HOURLY_ALIGNMENT_CONFIRMED = "HOURLY_ALIGNMENT_CONFIRMED"
    ALIGNMENT_LOST = "ALIGNMENT_LOST"
    ENTRY_FILTERS_EVALUATED = "ENTRY_FILTERS_EVALUATED"
    SIGNAL_GENERATED = "SIGNAL_GENERATED"
    NO_TRADE_SIGNAL = "NO_TRADE_SIGNAL"
    # Risk
    RISK_CHECK_PASSED = "RISK_CHECK_PASSED"
    RISK_CHECK_FAILED = "RISK_CHECK_FAILED"
    VIX_DATA_RECEIVED = "VIX_DATA_RECEIVED"
    VIX_SPIKE = "VIX_SPIKE"
    VIX_NORMAL_RESUMED = "VIX_NORMAL_RESUMED"
    DAILY_LOSS_LIMIT_BREACHED = "DAILY_LOSS_LIMIT_BREACHED"
    # Orders
    ORDER_INTENT_CREATED = "ORDER_INTENT_CREATED"
    ORDER_PLACED = "ORDER_PLACED"
    ORDER_RETRYING = "ORDER_RETRYING"
    ORDER_EXECUTED = "ORDER_EXECUTED"
    ORDER_PARTIALLY_FILLED = "ORDER_PARTIALLY_FILLED"
    ORDER_REJECTED = "ORDER_REJECTED"
    ORDER_FAILED = "ORDER_FAILED"
    # Positions
    POSITION_OPENED = "POSITION_OPENED"
    POSITION_UPDATED = "POSITION_UPDATED"
    TRAILING_STOP_ACTIVATED = "TRAILING_STOP_ACTIVATED"
    TRAILING_STOP_UPDATED = "TRAILING_STOP_UPDATED"
    STOP_LOSS_TRIGGERED = "STOP_LOSS_TRIGGERED"
    TARGET_REACHED = "TARGET_REACHED"
    # Exits
    EXIT_SIGNAL_GENERATED = "EXIT_SIGNAL_GENERATED"
    POSITION_CLOSED = "POSITION_CLOSED"
    POSITIONS_CLOSED = "POSITIONS_CLOSED"
    EOD_MANDATORY_EXIT = "EOD_MANDATORY_EXIT"
    KILL_SWITCH_ACTIVATED = "KILL_SWITCH_ACTIVATED"
    # System lifecycle
    GRACEFUL_SHUTDOWN_INITIATED = "GRACEFUL_SHUTDOWN_INITIATED"
    SHUTDOWN_COMPLETED = "SHUTDOWN_COMPLETED"
    FATAL_ERROR = "FATAL_ERROR"
