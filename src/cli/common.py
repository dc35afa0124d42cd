"""Shared helpers for the command line entry points."""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


def setup_logging(level: str = "INFO", log_name: Optional[str] = None, log_dir: str = "logs") -> None:
    """Configure root logging to stdout and, when ``log_name`` is given, a timestamped file."""

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file: Optional[Path] = None
    if log_name:
        directory = Path(log_dir)
        directory.mkdir(exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        log_file = directory / f"{log_name}_{timestamp}.log"
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    if log_file is not None:
        logging.getLogger(__name__).info("Logging initialised. Log file: %s", log_file)
