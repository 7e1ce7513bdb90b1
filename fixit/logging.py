import uuid
import time
import logging
import os
from contextlib import contextmanager
from typing import Iterator

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


def setup_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(format="%(message)s", level=getattr(logging, level, logging.INFO))
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@contextmanager
def sweep_context(sweep: str) -> Iterator[str]:
    """Tag every event logged during one sweep run with the sweep name and a run id."""
    run_id = uuid.uuid4().hex[:12]
    structlog.contextvars.bind_contextvars(sweep=sweep, sweep_run_id=run_id)
    try:
        yield run_id
    finally:
        structlog.contextvars.unbind_contextvars("sweep", "sweep_run_id")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Echo or mint X-Request-ID and bind it to every event logged while serving the request."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)
        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
            structlog.get_logger(__name__).info(
                "request_finished",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
        response.headers["X-Request-ID"] = request_id
        return response
