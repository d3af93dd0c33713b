"""
FastAPI main application — REST endpoints and WebSocket for real-time updates.
"""

import asyncio
import logging
import uuid
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from fixagent.agent import FixAgent
from fixagent.config import settings
from fixagent.models import AgentEvent, RunPhase, RunRequest, WorkflowOptions

# ── Logging ──────────────────────────────────────────────────


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


configure_logging()
logger = logging.getLogger(__name__)

# ── App ──────────────────────────────────────────────────────

app = FastAPI(
    title="Autonomous Issue Fixer",
    description="Analyzes a GitHub issue, writes a fix, verifies it, and opens a PR",
    version="1.0.0",
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── In-memory state ──────────────────────────────────────────

# Active runs: run_id -> run record
active_runs: dict[str, dict] = {}

# WebSocket connections: run_id -> list of WebSocket
ws_connections: dict[str, list[WebSocket]] = {}

# Replaced in tests
agent_factory = FixAgent

# ── REST Endpoints ───────────────────────────────────────────


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Autonomous Issue Fixer",
        "version": "1.0.0",
        "status": "running",
    }


@app.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@app.post("/api/runs", response_model=dict)
async def start_run(request: RunRequest):
    """
    Start a new fix run.
    Returns immediately with a run_id; progress is streamed via WebSocket.
    """
    run_id = str(uuid.uuid4())[:8]

    active_runs[run_id] = {
        "run_id": run_id,
        "status": "started",
        "request": request.model_dump(),
        "result": None,
    }

    # Launch the agent in the background
    asyncio.create_task(_execute_run(run_id, request))

    return {
        "run_id": run_id,
        "status": "started",
        "message": f"Fix run started. Connect to WebSocket at /ws/{run_id} for live updates.",
    }


@app.get("/api/runs/{run_id}")
async def get_run(run_id: str):
    """Get the status/result of a run."""
    if run_id not in active_runs:
        raise HTTPException(status_code=404, detail="Run not found")
    return active_runs[run_id]


@app.get("/api/runs")
async def list_runs():
    """List all runs."""
    return list(active_runs.values())


# ── WebSocket Endpoint ───────────────────────────────────────


@app.websocket("/ws/{run_id}")
async def websocket_endpoint(websocket: WebSocket, run_id: str):
    """
    WebSocket endpoint for real-time run updates.
    Clients connect here after starting a run.
    """
    await websocket.accept()
    logger.info(f"WebSocket connected for run {run_id}")

    ws_connections.setdefault(run_id, []).append(websocket)

    try:
        # Keep the connection alive until closed
        while True:
            try:
                await asyncio.wait_for(websocket.receive_text(), timeout=60.0)
            except asyncio.TimeoutError:
                # Send a ping to keep alive
                await websocket.send_json({"event_type": "ping"})
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for run {run_id}")
    finally:
        if run_id in ws_connections:
            ws_connections[run_id] = [ws for ws in ws_connections[run_id] if ws is not websocket]


# ── Background Agent Execution ───────────────────────────────


async def broadcast(run_id: str, event: AgentEvent):
    """Send an event to all WebSocket clients of a run, dropping dead ones."""
    event_dict = event.model_dump(mode="json")

    clients = ws_connections.get(run_id, [])
    disconnected = []
    for ws in clients:
        try:
            await ws.send_json(event_dict)
        except Exception:
            disconnected.append(ws)

    if disconnected and run_id in ws_connections:
        ws_connections[run_id] = [c for c in ws_connections[run_id] if c not in disconnected]


async def _execute_run(run_id: str, request: RunRequest):
    """Execute the fix run and broadcast events via WebSocket."""
    agent = agent_factory()
    options = WorkflowOptions(
        dry_run=request.dry_run,
        max_attempts=request.max_attempts or settings.max_attempts,
        use_local=request.use_local,
    )

    async def emit_event(event: AgentEvent):
        await broadcast(run_id, event)

    try:
        active_runs[run_id]["status"] = "running"
        result = await agent.run(request.issue_url, options, emit=emit_event)
        active_runs[run_id]["status"] = "completed"
        active_runs[run_id]["result"] = result.model_dump(mode="json")
    except Exception as e:
        logger.exception(f"Run {run_id} failed")
        active_runs[run_id]["status"] = "failed"
        active_runs[run_id]["error"] = str(e)

        await broadcast(run_id, AgentEvent(
            event_type="error",
            phase=RunPhase.FAILED,
            message=f"Fix run failed: {e}",
        ))


# ── Run with Uvicorn ─────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "fixagent.main:app",
        host=settings.host,
        port=settings.port,
    )
