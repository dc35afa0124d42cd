"""Run the token API under uvicorn."""

from __future__ import annotations

import argparse
from typing import Optional

import uvicorn
from dotenv import load_dotenv

from app.main import create_app
from token_pool import get_settings

from .common import setup_logging

# Export .env so uvicorn and the driver see the same environment as the settings.
load_dotenv()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the token pool HTTP API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    parser.add_argument("--log-file", action="store_true", help="Also write logs under ./logs")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    settings = get_settings()
    level = args.log_level or settings.log_level
    setup_logging(level, "token_api" if args.log_file else None)
    uvicorn.run(create_app(settings), host=args.host, port=args.port, log_level=level.lower(), log_config=None)


if __name__ == "__main__":
    main()
