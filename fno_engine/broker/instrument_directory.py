"""Instrument Directory — in-memory index of the broker's instrument master.

Records are JSON objects:
  {"token", "symbol", "name", "instrumenttype", "expiry" (YYYY-MM-DD),
   "strike", "option_type" (CE/PE), "lotsize", "tick_size", "exch_seg"}

find_option() without an expiry picks the nearest expiry on or after today.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from datetime import date
from pathlib import Path
from typing import Callable

from fno_engine.core.data_types import Instrument
from fno_engine.core.errors import DataFileNotFound, DeserializationError, InstrumentNotFound
from fno_engine.core.types import InstrumentKind, OptionType

logger = logging.getLogger(__name__)

_KINDS = {k.value: k for k in InstrumentKind}


def parse_record(rec: dict) -> Instrument:
    try:
        kind = _KINDS.get(str(rec.get("instrumenttype", "")).upper(), InstrumentKind.INDEX)
        expiry = date.fromisoformat(rec["expiry"]) if rec.get("expiry") else None
        option_type = OptionType(rec["option_type"]) if rec.get("option_type") else None
        return Instrument(
            token=str(rec["token"]),
            symbol=rec["symbol"],
            underlying=str(rec["name"]).upper(),
            kind=kind,
            lot_size=int(rec.get("lotsize", 1)),
            tick_size=float(rec.get("tick_size", 0.05)),
            exchange_segment=rec.get("exch_seg", "NFO"),
            expiry=expiry,
            strike=float(rec["strike"]) if rec.get("strike") is not None else None,
            option_type=option_type,
        )
    except (KeyError, ValueError, TypeError) as e:
        raise DeserializationError(f"Bad instrument record {rec!r}: {e}") from e


class InstrumentDirectory:
    def __init__(
        self,
        path: str | Path | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._path = Path(path) if path is not None else None
        self._today = today
        self._by_token: dict[str, Instrument] = {}
        self._options: dict[str, list[Instrument]] = defaultdict(list)
        self._spot: dict[str, Instrument] = {}

    @property
    def count(self) -> int:
        return len(self._by_token)

    async def refresh(self) -> int:
        """Reload the instrument file. Returns the number of instruments indexed."""
        if self._path is None:
            return self.count
        if not self._path.exists():
            raise DataFileNotFound(f"Instrument file not found: {self._path}")
        text = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
        try:
            records = json.loads(text)
        except json.JSONDecodeError as e:
            raise DeserializationError(f"Invalid instrument file {self._path}: {e}") from e
        return self.load_records(records)

    def load_records(self, records: list[dict]) -> int:
        self._by_token.clear()
        self._options.clear()
        self._spot.clear()
        for rec in records:
            inst = parse_record(rec)
            self._by_token[inst.token] = inst
            if inst.option_type is not None:
                self._options[inst.underlying].append(inst)
            elif inst.kind in (InstrumentKind.INDEX, InstrumentKind.STOCK):
                self._spot[inst.underlying] = inst
        logger.info(
            "Instrument directory loaded: %d instruments, %d underlyings with options",
            len(self._by_token), len(self._options),
        )
        return len(self._by_token)

    def register(self, inst: Instrument) -> None:
        self._by_token[inst.token] = inst
        if inst.option_type is not None:
            self._options[inst.underlying].append(inst)
        else:
            self._spot[inst.underlying] = inst

    def get(self, token: str) -> Instrument:
        inst = self._by_token.get(token)
        if inst is None:
            raise InstrumentNotFound(f"Unknown token {token}")
        return inst

    def expiries(self, underlying: str) -> list[date]:
        return sorted({i.expiry for i in self._options.get(underlying.upper(), []) if i.expiry})

    def strikes(self, underlying: str, expiry: date | None = None) -> list[float]:
        return sorted({
            i.strike for i in self._options.get(underlying.upper(), [])
            if i.strike is not None and (expiry is None or i.expiry == expiry)
        })

    def option_instrument(
        self,
        underlying: str,
        strike: float,
        option_type: OptionType,
        expiry: date | None = None,
    ) -> Instrument:
        name = underlying.upper()
        candidates = [
            i for i in self._options.get(name, [])
            if i.option_type is option_type and i.strike is not None and abs(i.strike - strike) < 1e-6
        ]
        if expiry is not None:
            candidates = [i for i in candidates if i.expiry == expiry]
        else:
            today = self._today()
            candidates = [i for i in candidates if i.expiry is not None and i.expiry >= today]
        if not candidates:
            raise InstrumentNotFound(
                f"No {name} {strike:g} {option_type.value} option"
                + (f" expiring {expiry}" if expiry else "")
            )
        return min(candidates, key=lambda i: i.expiry)

    def find_option(
        self,
        underlying: str,
        strike: float,
        option_type: OptionType,
        expiry: date | None = None,
    ) -> tuple[str, str, int]:
        inst = self.option_instrument(underlying, strike, option_type, expiry)
        return inst.token, inst.symbol, inst.lot_size

    def underlying_token(self, name: str) -> str:
        inst = self._spot.get(name.upper())
        if inst is None:
            raise InstrumentNotFound(f"No spot instrument for {name}")
        return inst.token
