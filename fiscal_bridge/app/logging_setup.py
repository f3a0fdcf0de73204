from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from fiscal_bridge.app import config

_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def setup_logging(level: str | None = None, log_file: str | None = None) -> None:
    """Configure the root logger once (stdout + optional rotating file)."""
    level_name = (level or config.LOG_LEVEL).upper()
    log_file = log_file if log_file is not None else config.LOG_FILE

    fmt = logging.Formatter(_FORMAT)
    root = logging.getLogger()
    root.setLevel(level_name)

    if not any(getattr(h, "_fiscal_bridge", False) for h in root.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(fmt)
        stream._fiscal_bridge = True  # type: ignore[attr-defined]
        root.addHandler(stream)

        if log_file:
            path = Path(log_file).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            rotating = logging.handlers.RotatingFileHandler(
                path, maxBytes=5_000_000, backupCount=3, encoding="utf-8"
            )
            rotating.setFormatter(fmt)
            rotating._fiscal_bridge = True  # type: ignore[attr-defined]
            root.addHandler(rotating)

    # uvicorn installs its own handlers, keep the level consistent
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        logging.getLogger(name).setLevel(level_name)
