"""
Run the MarketLens API server.

  python run_api.py

Host and port come from API_HOST / API_PORT (see marketlens.config).
"""

import uvicorn

from marketlens.api import create_api_app
from marketlens.config import settings
from marketlens.utils.logging import get_logger, setup_logging


def main():
    """Run the API server."""
    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("run_api")

    app = create_api_app()

    logger.info("Starting MarketLens API", host=settings.api_host, port=settings.api_port)
    logger.info("API docs available", url=f"http://{settings.api_host}:{settings.api_port}/docs")

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
