"""
Logging setup shared by the apps.

Library modules only ever call ``logging.getLogger(__name__)``; handlers and
levels are configured once here, from the environment:

    SORTER_LOG_LEVEL   (default INFO)
    SORTER_LOG_FORMAT  (default "%(asctime)s [%(name)s] %(levelname)s: %(message)s")
"""

import logging
import os
import sys

LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"
DEFAULT_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

_configured = False


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once; later calls are no-ops."""
    global _configured
    if _configured:
        return

    name = (level or os.environ.get("SORTER_LOG_LEVEL", "INFO")).upper()
    fmt = os.environ.get("SORTER_LOG_FORMAT", DEFAULT_FORMAT)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=fmt, datefmt=LOG_DATE_FORMAT))

    root = logging.getLogger()
    root.setLevel(getattr(logging, name, logging.INFO))
    # Avoid adding duplicate handlers on repeated calls
    if not root.handlers:
        root.addHandler(handler)

    _configured = True
