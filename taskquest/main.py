"""Main entry point for the TaskQuest API server"""
import logging

import uvicorn

from taskquest.config import API_HOST, API_PORT, validate_config

logger = logging.getLogger(__name__)


def main() -> None:
    """Validate configuration and serve the API"""
    validate_config()

    logger.info(f"Starting TaskQuest API on {API_HOST}:{API_PORT}")
    uvicorn.run("taskquest.api.server:app", host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    main()
