from __future__ import annotations

import asyncio
import io
import json
import queue
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from otscan.config import Settings
from otscan.engine import ScanSession
from otscan.errors import InvalidInput, SubmissionError
from otscan.log import get_logger
from otscan.models import Device, PollEvent
from otscan.notify import notification_listener
from otscan.report import devices_csv, summary_dict

logger = get_logger("api")

# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    session.close()


app = FastAPI(title="otscan Control Plane", docs_url="/docs", redoc_url="/redoc", lifespan=lifespan)

_start_time = time.monotonic()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.monotonic()
    response = await call_next(request)
    elapsed = (time.monotonic() - start) * 1000
    logger.info("%s %s %d (%.1fms)", request.method, request.url.path,
                response.status_code, elapsed)
    return response

# ---------------------------------------------------------------------------
# Session & SSE
# ---------------------------------------------------------------------------

settings = Settings.from_config()
session = ScanSession(settings)
_event_queue: queue.Queue = queue.Queue(maxsize=1000)


def _on_event(evt: PollEvent) -> None:
    try:
        _event_queue.put_nowait(evt)
    except queue.Full:
        logger.debug("SSE queue full; dropping %s event for %s", evt.type, evt.task_id)


session.add_listener(_on_event)
session.add_listener(notification_listener(settings.notifications))

# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

async def verify_api_key(
    authorization: Optional[str] = Header(default=None),
    token: Optional[str] = Query(default=None),
):
    api_key = settings.web.api_key
    if not api_key:
        return
    # Support both header and query param (for SSE EventSource)
    bearer_token = None
    if authorization and authorization.startswith("Bearer "):
        bearer_token = authorization[7:]
    actual = bearer_token or token
    if not actual or actual != api_key:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class ScanRequest(BaseModel):
    subnet: str

# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/api/v1/health")
def health():
    return {"status": "ok", "uptime_seconds": int(time.monotonic() - _start_time)}

# --- Scans ---

def _scan_state() -> dict:
    task = session.last_task
    return {
        "scanning": session.scanning,
        "task": task.model_dump(mode="json") if task else None,
        "status_message": session.status_message,
        "error": session.last_error,
    }


@app.post("/api/v1/scans", dependencies=[Depends(verify_api_key)])
def start_scan(request: ScanRequest):
    try:
        task = session.start_scan(request.subnet)
    except InvalidInput as e:
        raise HTTPException(status_code=400, detail=e.detail)
    except SubmissionError as e:
        raise HTTPException(status_code=502, detail=e.detail)
    return {"task_id": task.id, "status": task.state.value}


@app.get("/api/v1/scans/active", dependencies=[Depends(verify_api_key)])
def get_active_scan():
    return _scan_state()


@app.delete("/api/v1/scans/active", dependencies=[Depends(verify_api_key)])
def cancel_scan():
    if session.cancel():
        return {"status": "cancelled"}
    raise HTTPException(status_code=404, detail="No scan in progress")

# --- Devices ---

@app.get("/api/v1/devices", response_model=list[Device], dependencies=[Depends(verify_api_key)])
def get_devices():
    return session.devices


@app.get("/api/v1/devices/export", dependencies=[Depends(verify_api_key)])
def export_devices(format: str = "csv"):
    devices = session.devices
    if format == "json":
        return [d.model_dump(mode="json") for d in devices]
    return StreamingResponse(
        io.BytesIO(devices_csv(devices).encode()),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=devices.csv"},
    )

# --- Summary ---

@app.get("/api/v1/summary", dependencies=[Depends(verify_api_key)])
def get_summary():
    return summary_dict(session.summary())

# --- Events ---

@app.get("/api/v1/events/stream", dependencies=[Depends(verify_api_key)])
async def event_stream():
    async def generate():
        while True:
            try:
                evt = _event_queue.get_nowait()
                yield f"data: {json.dumps(evt.model_dump(mode='json'))}\n\n"
            except queue.Empty:
                yield ": keepalive\n\n"
                await asyncio.sleep(1)
    return StreamingResponse(generate(), media_type="text/event-stream")
