"""Utility helpers for logging and file output."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(log_file: Path | None = None, verbose: bool = False) -> None:
    """Configure root logging to console and optionally a file."""
    level = logging.DEBUG if verbose else logging.INFO
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, ensure_ascii=False)
        fh.write("\n")


def format_point(point: Any, digits: int = 3) -> str:
    if point is None:
        return "none"
    return "[" + ", ".join(f"{float(v):.{digits}f}" for v in point) + "]"


def format_extent(extent: Any, digits: int = 1) -> str:
    if extent is None:
        return "none"
    return f"{format_point(extent[0], digits)}-{format_point(extent[1], digits)}"
