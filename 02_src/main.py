"""Run the agent flow service."""

import os

import uvicorn
from dotenv import load_dotenv

from agentflow.api import create_fastapi_app
from agentflow.config import PROJECT_ROOT
from agentflow.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


def main():
    load_dotenv(PROJECT_ROOT / ".env")
    setup_logging()

    host = os.getenv("API_HOST", "localhost")
    port = int(os.getenv("API_PORT", "8000"))
    logger.info("Serving agent flows on %s:%s", host, port)

    uvicorn.run(create_fastapi_app(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
