"""Action endpoints — kill switch and shutdown."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from fno_engine.core.types import ExitReason
from fno_engine.server.state import EngineState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["actions"])


class FlattenRequest(BaseModel):
    reason: str = "manual"
    shutdown: bool = False


def _engine():
    o = EngineState().orchestrator
    if o is None:
        raise HTTPException(status_code=409, detail="No running engine.")
    return o


@router.post("/flatten")
async def flatten(req: FlattenRequest):
    o = _engine()
    logger.critical("Kill switch from API: %s", req.reason)
    trades = await o.flatten(ExitReason.MANUAL_FLATTEN)
    if req.shutdown:
        o.request_shutdown()
    return {
        "status": "flattened",
        "closed": len(trades),
        "net_pnl": sum(t.net_pnl for t in trades),
        "positions_remaining": o.positions.open_count,
        "shutdown_requested": o.shutdown_requested,
    }


@router.post("/shutdown")
def shutdown():
    o = _engine()
    o.request_shutdown()
    return {"status": "shutdown_requested"}
