"""
Run the rider roster API with uvicorn.
"""

from __future__ import annotations

import logging

import uvicorn

from roster.config import get_settings

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
    )
    logger.info(
        "Starting rider roster API on %s:%d (environment=%s)",
        settings.host,
        settings.port,
        settings.app_env,
    )
    uvicorn.run(
        "roster.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
