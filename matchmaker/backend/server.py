"""Run the matchmaker API and round table under uvicorn."""

from __future__ import annotations

import logging
import os

from .api import create_app
from .config import load_settings


def configure_logging() -> None:
    level = os.getenv("MATCHMAKER_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> int:
    import uvicorn

    configure_logging()
    settings = load_settings()
    if not settings.admin_token:
        logging.getLogger(__name__).warning("MATCHMAKER_ADMIN_TOKEN is not set; admin endpoints will answer 403")
    app = create_app(settings=settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
