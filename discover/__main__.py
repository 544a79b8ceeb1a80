"""Run the Discover API with ``python -m discover``."""

from __future__ import annotations

import logging

import uvicorn

from app.config import settings

logger = logging.getLogger("discover")


def main() -> None:
    development = settings.environment == "development"
    logger.info(
        "Starting %s on %s:%s", settings.app_name, settings.server_host, settings.server_port
    )
    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=development,
        log_level="debug" if development else "info",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
