"""FastAPI application — F&O engine monitoring and kill-switch backend."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fno_engine.server.routes.actions import router as actions_router
from fno_engine.server.routes.dashboard import router as dashboard_router
from fno_engine.server.ws import websocket_endpoint

app = FastAPI(
    title="F&O Engine",
    version="1.0.0",
    description="Monitoring API for the NSE F&O intraday options engine",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5185", "http://127.0.0.1:5185"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(dashboard_router)
app.include_router(actions_router)

app.add_api_websocket_route("/ws", websocket_endpoint)


@app.get("/")
def root():
    return {"service": "F&O Engine", "version": "1.0.0"}
