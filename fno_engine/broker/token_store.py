"""Broker session tokens persisted as one JSON document, rewritten atomically."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

from fno_engine.core.data_types import utc_now
from fno_engine.core.errors import DeserializationError
from fno_engine.utils.files import atomic_write_json

logger = logging.getLogger(__name__)


def _parse(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    feed_token: str
    access_expiry: datetime
    feed_expiry: datetime
    refresh_token: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "feed_token": self.feed_token,
            "access_expiry": self.access_expiry.isoformat(),
            "feed_expiry": self.feed_expiry.isoformat(),
            "refresh_token": self.refresh_token,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> TokenSet:
        return cls(
            access_token=d["access_token"],
            feed_token=d["feed_token"],
            access_expiry=_parse(d["access_expiry"]),
            feed_expiry=_parse(d["feed_expiry"]),
            refresh_token=d.get("refresh_token"),
        )


class TokenStore:
    def __init__(
        self,
        path: str | Path,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._path = Path(path)
        self._clock = clock
        self._tokens: TokenSet | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def tokens(self) -> TokenSet | None:
        return self._tokens

    def load(self) -> TokenSet | None:
        """Read the token file. None when it does not exist."""
        if not self._path.exists():
            logger.info("No token file at %s", self._path)
            self._tokens = None
            return None
        try:
            with open(self._path, encoding="utf-8") as f:
                self._tokens = TokenSet.from_dict(json.load(f))
        except (ValueError, KeyError, TypeError) as e:
            raise DeserializationError(f"Corrupt token file {self._path}: {e}") from e
        logger.info("Tokens loaded (access expires %s)", self._tokens.access_expiry.isoformat())
        return self._tokens

    def save(self, tokens: TokenSet) -> None:
        atomic_write_json(self._path, tokens.to_dict())
        self._tokens = tokens
        logger.info("Tokens stored at %s", self._path)

    def clear(self) -> None:
        self._tokens = None
        if self._path.exists():
            self._path.unlink()

    def is_valid(self, now: datetime | None = None) -> bool:
        if self._tokens is None:
            return False
        return self._tokens.access_expiry > (now or self._clock())

    def time_to_expiry(self, now: datetime | None = None) -> timedelta | None:
        if self._tokens is None:
            return None
        return self._tokens.access_expiry - (now or self._clock())

    def needs_refresh(self, now: datetime | None = None, warning_min: float = 30.0) -> bool:
        """True when the access token expires within ``warning_min`` minutes."""
        remaining = self.time_to_expiry(now)
        if remaining is None:
            return True
        return remaining <= timedelta(minutes=warning_min)
