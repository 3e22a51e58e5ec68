"""Server entry point: ``movement-intake --port 8000``."""

import argparse
from typing import List, Optional

import structlog
import uvicorn

from .config import get_settings
from .logging_config import setup_logging

logger = structlog.get_logger()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Movement intake API server")
    parser.add_argument("--host", default=settings.host, help="Interface to bind")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to run the server on")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    log_file = setup_logging()
    logger.info("Starting server", host=args.host, port=args.port, log_file=str(log_file))

    from .api import app

    uvicorn.run(app, host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
