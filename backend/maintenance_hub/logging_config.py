from __future__ import annotations

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    from .config import settings

    name = (level or settings.log_level or "INFO").upper()
    logging.basicConfig(format=LOG_FORMAT, level=getattr(logging, name, logging.INFO))
