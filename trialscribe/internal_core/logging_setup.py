from __future__ import annotations

import logging

from .config import ScribeConfig

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(funcName)s - %(message)s"


def configure_logging(cfg: ScribeConfig) -> None:
    """Configure root logging from SCRIBE_LOG_LEVEL."""
    logging.basicConfig(
        level=getattr(logging, cfg.SCRIBE_LOG_LEVEL.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
