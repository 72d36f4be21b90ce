"""HTTP routes for reading and updating the desired LED state.

Exposes endpoints like:

- GET  /led?limit=N  -> latest state + up to N older records (newest first)
- PUT  /led          -> merge a partial update (JSON or form body) and
- POST /led             return the stored record
- GET  /led/healthz  -> liveness probe
"""

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from exceptions.exceptions import LockTimeoutError, StateLogError
from ..models.led_models import (
    ErrorResponse,
    StateReadResponse,
    StateWriteResponse,
    channel_update,
)
from ..store.state_log import StateLog


logger = logging.getLogger(__name__)

# Router for all LED endpoints
router = APIRouter()


# Module-level references, to be initialized by the server.
_STATE_LOG: Optional[StateLog] = None
_DEFAULT_LIMIT: int = 50


def init_routes(state_log: StateLog, default_limit: int) -> None:
    """Initialize module-level references used by the route handlers."""
    global _STATE_LOG, _DEFAULT_LIMIT
    _STATE_LOG = state_log
    _DEFAULT_LIMIT = default_limit


def _require_state_log() -> StateLog:
    if _STATE_LOG is None:
        raise HTTPException(
            status_code=500,
            detail="StateLog is not configured on the server.",
        )
    return _STATE_LOG


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message).model_dump(),
    )


async def _parse_payload(request: Request) -> Dict[str, Any]:
    """Read the request body as JSON, falling back to form fields."""
    content_type = request.headers.get("content-type", "").lower()

    if request.method == "PUT" or "application/json" in content_type:
        raw = await request.body()
        if raw:
            try:
                data = json.loads(raw)
            except ValueError:
                data = None
            if isinstance(data, dict):
                return data

    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        form = await request.form()
        return dict(form)

    return {}


def state_log_error_handler(request: Request, exc: StateLogError) -> JSONResponse:
    """Map state log failures to an explicit error response."""
    status_code = 503 if isinstance(exc, LockTimeoutError) else 500
    logger.error(
        "[LED] HTTP %s for %s %s reason=%r",
        status_code,
        request.method,
        request.url.path,
        str(exc),
    )
    return _error(status_code, str(exc))


@router.get("", response_model=StateReadResponse)
def get_state(limit: Optional[int] = None) -> StateReadResponse:
    """Return the latest state and its history.

    `limit` defaults to the configured history length and is clamped to
    [0, hard cap] by the StateLog.
    """
    state_log = _require_state_log()
    if limit is None:
        limit = _DEFAULT_LIMIT
    state = state_log.read_state(limit)
    return StateReadResponse(**state)


@router.api_route("", methods=["PUT", "POST"], response_model=StateWriteResponse)
async def update_state(request: Request):
    """Merge the channels present in the payload onto the latest state.

    Unknown keys and values other than ON/OFF are ignored; a payload
    with no usable content at all is rejected.
    """
    state_log = _require_state_log()

    payload = await _parse_payload(request)
    if not payload:
        logger.warning("[LED] Rejected empty payload for %s /led", request.method)
        return _error(400, "Empty or invalid payload")

    update = channel_update(payload, state_log.channels)
    stored = await run_in_threadpool(state_log.append, update)
    logger.info("[LED] Stored state %s", stored)
    return StateWriteResponse(**stored)


# --------------------------------------------------------
# Endpoint: GET /led/healthz
# --------------------------------------------------------
@router.get("/healthz")
def health_check():
    """
    Simple health check endpoint for uptime monitoring.
    """
    return {"status": "ok"}
