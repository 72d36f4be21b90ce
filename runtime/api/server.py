"""
FastAPI application entry point for the LED-Sync runtime.

Responsibilities:
- configure logging from settings
- construct the shared StateLog singleton
- install CORS and no-cache headers for browser dashboards
- include the LED routes under /led

Run with:

    uvicorn runtime.api.server:app --reload
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from configs.settings import settings
from exceptions.exceptions import StateLogError
from runtime.store.state_log import StateLog
from . import led_routes


logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}


def create_app(state_log: StateLog, default_limit: Optional[int] = None) -> FastAPI:
    """Build the FastAPI app around a given StateLog."""
    app = FastAPI(title="LED-Sync Runtime")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Content-Type", "X-Requested-With"],
    )

    @app.middleware("http")
    async def no_cache(request: Request, call_next):
        response = await call_next(request)
        response.headers.update(NO_CACHE_HEADERS)
        return response

    # Initialize the router module with our shared objects, then include it.
    led_routes.init_routes(
        state_log=state_log,
        default_limit=settings.default_history if default_limit is None else default_limit,
    )
    app.include_router(led_routes.router, prefix="/led")
    app.add_exception_handler(StateLogError, led_routes.state_log_error_handler)
    return app


# ---------------------------------------------------------------------------
# Shared singletons
# ---------------------------------------------------------------------------

# State log: JSON Lines file shared by every worker process via flock.
state_log = StateLog.from_settings(settings)

app = create_app(state_log)
