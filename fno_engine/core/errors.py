"""Typed error hierarchy with stable codes.

Every error carries a short code for logs and events, plus three flags the
orchestrator uses to decide recovery:

  is_recoverable: retried by the owning component or skipped for this cycle
  is_fatal:       stop the engine after flatten and trade persistence
  requires_exit:  flatten all open positions with the error's reason
"""

from __future__ import annotations

from typing import Any


class TradingError(Exception):
    """Base class for all engine errors."""

    code = "GEN_001"
    recoverable = False
    fatal = False
    exit_required = False

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    @property
    def is_recoverable(self) -> bool:
        return self.recoverable

    @property
    def is_fatal(self) -> bool:
        return self.fatal

    @property
    def requires_exit(self) -> bool:
        return self.exit_required

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


# Authentication

class AuthenticationFailed(TradingError):
    code = "AUTH_001"


class TokenExpired(TradingError):
    code = "AUTH_002"
    exit_required = True


class TokenRefreshFailed(TradingError):
    code = "AUTH_003"
    fatal = True


# Network

class HttpError(TradingError):
    code = "NET_001"
    recoverable = True


class WebSocketError(TradingError):
    code = "NET_002"


class WebSocketDisconnected(TradingError):
    code = "NET_003"
    recoverable = True


class NetworkTimeout(TradingError):
    code = "NET_004"
    recoverable = True


# Data

class DataGap(TradingError):
    code = "DATA_001"
    recoverable = True


class InvalidBarData(TradingError):
    code = "DATA_002"


class MissingData(TradingError):
    code = "DATA_003"


class DeserializationError(TradingError):
    code = "DATA_004"


# Orders

class OrderPlacementFailed(TradingError):
    code = "ORDER_001"
    recoverable = True


class OrderNotFound(TradingError):
    code = "ORDER_002"


class OrderRejected(TradingError):
    code = "ORDER_003"


class OrderValidationError(OrderRejected):
    """Pre-trade validation failure. ``check`` names the failing rule."""

    def __init__(self, message: str = "", check: str = "", **context: Any) -> None:
        super().__init__(message, **context)
        self.check = check


class InsufficientMargin(OrderValidationError):
    code = "ORDER_004"


class FreezeQuantityBreach(OrderValidationError):
    code = "ORDER_005"


class PriceBandBreach(OrderValidationError):
    code = "ORDER_006"


# Positions

class PositionNotFound(TradingError):
    code = "POS_001"


class PositionLimitExceeded(TradingError):
    code = "POS_002"


class DuplicatePosition(TradingError):
    code = "POS_003"


# Risk

class DailyLossLimit(TradingError):
    code = "RISK_001"
    exit_required = True


class VixSpike(TradingError):
    code = "RISK_002"
    exit_required = True


class RiskCheckFailed(TradingError):
    """Pre-entry gate refused a new entry. ``check`` names the gate."""

    code = "RISK_003"

    def __init__(self, message: str = "", check: str = "", **context: Any) -> None:
        super().__init__(message, **context)
        self.check = check


# Strategy

class InvalidStrategyState(TradingError):
    code = "STRAT_001"


class NoTradeSignal(TradingError):
    code = "STRAT_002"


class AlignmentLost(TradingError):
    code = "STRAT_003"


# Configuration

class ConfigError(TradingError):
    code = "CFG_001"
    fatal = True


class InvalidParameter(OrderValidationError):
    code = "CFG_002"


# Files

class FileError(TradingError):
    code = "FILE_001"


class DataFileNotFound(FileError):
    code = "FILE_002"


class FileWriteFailed(FileError):
    code = "FILE_003"


# Market / session

class MarketClosed(OrderValidationError):
    code = "MKT_001"
    exit_required = True


class OutsideEntryWindow(TradingError):
    code = "MKT_002"


class NonTradingDay(TradingError):
    code = "MKT_003"


# Broker

class BrokerApiError(TradingError):
    code = "BROKER_001"

    def __init__(self, message: str = "", broker_code: str = "", **context: Any) -> None:
        super().__init__(message, **context)
        self.broker_code = broker_code


class RateLimitExceeded(TradingError):
    code = "BROKER_002"
    recoverable = True


class InstrumentNotFound(TradingError):
    code = "BROKER_003"


# System

class SystemShutdown(TradingError):
    code = "SYS_001"
    fatal = True


class FatalError(TradingError):
    code = "SYS_002"
    fatal = True


class GracefulExit(TradingError):
    code = "SYS_003"


# Events and idempotency

class EventDispatchFailed(TradingError):
    code = "EVENT_001"


class EventHandlerError(TradingError):
    code = "EVENT_002"


class DuplicateEvent(TradingError):
    code = "IDEM_001"


class IdempotencyCollision(TradingError):
    code = "IDEM_002"


# Recovery

class RecoveryFailed(TradingError):
    code = "REC_001"


class RecoveryTimeout(TradingError):
    code = "REC_002"


class InternalError(TradingError):
    code = "INT_001"
