# backend/logging_setup.py
import os
import json
import logging
from typing import Any, Optional

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

def configure_logging(level: Optional[str] = None) -> None:
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT, datefmt=DATE_FORMAT)

def log_step(logger: logging.Logger, tag: str, step: str, details: Any = None) -> None:
    """Log one step of a function run as ``[TAG] step - {details}``."""
    details_str = f" - {json.dumps(details, default=str)}" if details else ""
    logger.info(f"[{tag}] {step}{details_str}")
