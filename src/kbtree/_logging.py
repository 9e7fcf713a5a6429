"""Logging configuration for kbtree.

Modules log through ``logging.getLogger(__name__)``; this installs the one
handler on the package logger.  The level comes from ``KBTREE_LOG_LEVEL``
(default ``INFO``).
"""

import logging
import os
import sys


def configure_logging(level: str | None = None) -> None:
    """Configure the ``kbtree`` logger once; later calls only adjust the level."""
    root_logger = logging.getLogger("kbtree")

    level_name = (level or os.environ.get("KBTREE_LOG_LEVEL", "INFO")).upper()
    resolved = getattr(logging, level_name, logging.INFO)
    root_logger.setLevel(resolved)

    if root_logger.handlers:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(fmt="[%(levelname)s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
    )
    root_logger.addHandler(handler)
    # Avoid duplicates through the root logger
    root_logger.propagate = False
