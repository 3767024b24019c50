"""Application entry point for the quiz workshop service."""

from __future__ import annotations

from quiz_workshop.server.api_server import create_app_from_settings, run_api_server
from quiz_workshop.utils.logging_config import configure_logging
from quiz_workshop.utils.settings import WorkshopSettings


def main() -> None:
    """Load settings, initialize logging, and serve the API."""
    settings = WorkshopSettings.from_env()
    logger = configure_logging(settings.log_level)
    logger.info("Starting quiz workshop service on %s:%d", settings.host, settings.port)

    app = create_app_from_settings(settings)
    run_api_server(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
