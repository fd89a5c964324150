"""Process entry point: `python -m jwtlab` or `jwtlab-server`.

Startup problems (bad configuration, unreachable database, failed migration)
are fatal. On SIGINT/SIGTERM uvicorn stops accepting connections and drains
in-flight requests; the store is closed only after that.
"""
from __future__ import annotations

import uvicorn
from pydantic import ValidationError

from .config import Settings
from .domain.errors import JwtLabError
from .logging_conf import get_logger, setup_logging
from .main import create_app, open_store

logger = get_logger("server")


def load_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as e:
        logger.error("config.invalid", extra={"event": "config_invalid", "error": str(e)})
        raise SystemExit(1) from e


def main() -> None:
    setup_logging()
    settings = load_settings()
    setup_logging(settings.log_level)

    logger.info("store.init", extra={"event": "store_init", "database_uri": settings.database_uri})
    try:
        store = open_store(settings)
    except JwtLabError as e:
        logger.error("startup.failed", extra={"event": "startup_failed", "error_code": e.code, "error": str(e)})
        raise SystemExit(1) from e

    config = uvicorn.Config(
        create_app(settings, store),
        host=settings.server_addr,
        port=settings.server_port,
        log_config=None,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=int(settings.shutdown_grace_sec),
    )
    server = uvicorn.Server(config)
    logger.info(
        "server.start",
        extra={"event": "server_start", "host": settings.server_addr, "port": settings.server_port},
    )
    try:
        server.run()
    finally:
        store.close()
    logger.info("server.stop", extra={"event": "server_stop"})
    if not server.started:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
