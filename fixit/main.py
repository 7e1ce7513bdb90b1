import os

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from .config import settings
from .db import Base, engine, get_db
from .logging import setup_logging, RequestIdMiddleware
from .routes.reports import router as reports_router
from .routes.assignments import router as assignments_router
from .routes.technicians import router as technicians_router
from .routes.automation import router as automation_router
from .services.errors import DependencyFailure, DispatchError


logger = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Errors
    @app.exception_handler(DispatchError)
    async def _dispatch_error(request: Request, exc: DispatchError):
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, kind=exc.kind, error=exc.message)
        else:
            logger.info("request_rejected", path=request.url.path, kind=exc.kind, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

    @app.exception_handler(OperationalError)
    async def _store_unreachable(request: Request, exc: OperationalError):
        logger.error("database_unreachable", path=request.url.path, error=str(exc))
        failure = DependencyFailure("Database unavailable")
        return JSONResponse(status_code=failure.status_code, content={"error": failure.to_dict()})

    # Routers
    app.include_router(reports_router)
    app.include_router(assignments_router)
    app.include_router(technicians_router)
    app.include_router(automation_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health(db: Session = Depends(get_db)):
        try:
            db.execute(text("SELECT 1"))
        except OperationalError as e:
            logger.error("health_check_failed", error=str(e))
            return JSONResponse(status_code=503, content={"status": "degraded", "database": "unreachable"})
        return {"status": "ok", "database": "ok"}

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            # Register tables on the metadata before creating them
            from .models import models  # noqa: F401
            Base.metadata.create_all(bind=engine)
            logger.info("database_ready", tables=sorted(Base.metadata.tables.keys()))

    return app


app = create_app()
