"""Dashboard REST endpoints — read-only snapshots of engine state."""

from fastapi import APIRouter

from fno_engine.server.state import EngineState

router = APIRouter(prefix="/api", tags=["dashboard"])


@router.get("/dashboard")
def get_dashboard():
    return EngineState().snapshot_dashboard()


@router.get("/positions")
def get_positions():
    return EngineState().snapshot_positions()


@router.get("/trades")
def get_trades():
    return EngineState().snapshot_trades()


@router.get("/risk")
def get_risk():
    return EngineState().snapshot_risk()


@router.get("/orders")
def get_orders():
    return EngineState().snapshot_orders()


@router.get("/config")
def get_config():
    return EngineState().snapshot_config()
