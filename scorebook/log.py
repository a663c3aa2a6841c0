from __future__ import annotations

import logging
import sys
from pathlib import Path

HANDLER_NAME = "scorebook"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: int | str = logging.INFO, log_file: Path | str | None = None) -> logging.Handler:
    """Attach the service's handler to the root logger.

    Records go to ``log_file`` when it is set and to stdout otherwise. The
    handler is installed once; later calls only change the level. Handlers
    owned by the host (uvicorn, pytest's caplog) are left in place.
    """
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers:
        if handler.get_name() == HANDLER_NAME:
            return handler

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    return handler
