"""FastAPI app factory: fault barrier, access log, `/ping` and the token API."""
from __future__ import annotations

import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from . import __version__
from .api import router as api_router
from .config import Settings, get_settings
from .domain.errors import JwtLabError
from .logging_conf import get_logger, setup_logging
from .service import TokenService
from .store import SQLiteTokenStore

logger = get_logger("app")

INTERNAL_ERROR = "Internal server error"


def open_store(settings: Settings) -> SQLiteTokenStore:
    """Open, ping and migrate the configured database.

    Any failure closes the handle and propagates; callers treat it as fatal.
    """
    store = SQLiteTokenStore.open(settings.database_uri, timeout=settings.store_timeout_sec)
    try:
        store.ping()
        store.migrate()
    except JwtLabError:
        store.close()
        raise
    return store


def create_app(settings: Settings | None = None, store: SQLiteTokenStore | None = None) -> FastAPI:
    """Build the application.

    With `store` given the caller owns it; otherwise the lifespan opens the
    configured database on startup and closes it after the server has drained.
    """
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        cfg = settings or get_settings()
        owned = store is None
        active = open_store(cfg) if owned else store
        if cfg.uses_default_secret:
            logger.warning("config.default_secret", extra={"event": "default_secret"})
        app.state.token_service = TokenService(
            active, secret=cfg.jwt_secret, store_timeout=cfg.store_timeout_sec
        )
        logger.info("startup", extra={"event": "startup", "version": __version__})
        try:
            yield
        finally:
            logger.info("shutdown", extra={"event": "shutdown"})
            if owned:
                active.close()

    app = FastAPI(title="jwtlab", version=__version__, lifespan=lifespan)

    @app.exception_handler(JwtLabError)
    async def _handle_jwtlab_error(request: Request, exc: JwtLabError) -> JSONResponse:
        """Client errors keep their message; server errors only say so."""
        if exc.is_client_error:
            logger.info(
                "request.rejected",
                extra={"event": "request_rejected", "path": request.url.path, "error_code": exc.code},
            )
            return JSONResponse(status_code=exc.status_code, content={"detail": str(exc), "error_code": exc.code})
        logger.error(
            "request.failed",
            exc_info=exc,
            extra={"event": "request_failed", "path": request.url.path, "error_code": exc.code},
        )
        return JSONResponse(status_code=exc.status_code, content={"detail": INTERNAL_ERROR})

    @app.middleware("http")
    async def access_log(request: Request, call_next: Callable[[Request], Response]):
        """Fault barrier and access log around every request.

        - Reuses an incoming X-Request-ID or mints one and echoes it back
        - Turns any escaped exception into an opaque 500; the process keeps serving
        - Logs client, method, path, status and elapsed_ms once the request ends
        """
        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        request.state.request_id = request_id

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request.fault",
                extra={
                    "event": "request_fault",
                    "method": request.method,
                    "path": request.url.path,
                    "request_id": request_id,
                },
            )
            response = JSONResponse(status_code=500, content={"detail": INTERNAL_ERROR})
        elapsed_ms = (time.perf_counter() - start) * 1000.0

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "request.end",
            extra={
                "event": "request_end",
                "client": request.client.host if request.client else "-",
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "elapsed_ms": round(elapsed_ms, 2),
                "request_id": request_id,
            },
        )
        return response

    @app.get("/ping", response_class=PlainTextResponse, summary="Liveness check")
    async def ping() -> str:
        return "pong"

    app.include_router(api_router)

    return app


# ASGI entrypoint for uvicorn: `uvicorn jwtlab.main:app`
app = create_app()
