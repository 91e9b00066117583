"""
Logging configuration for the KYC identity gateway.
Application and audit log lines go to the console and to daily log files.
Any 13-digit run that slips into a message is masked before it reaches a sink.
"""

import re
import sys
from datetime import datetime

from loguru import logger

from src import config

LOGS_DIR = config.LOGS_DIR
LOGS_DIR.mkdir(parents=True, exist_ok=True)

_today = datetime.now().strftime('%Y-%m-%d')
LOG_FILE = LOGS_DIR / f"identity_gateway_{_today}.log"
ERROR_LOG_FILE = LOGS_DIR / f"identity_gateway_errors_{_today}.log"

LOG_LEVEL = config.get("LOG_LEVEL", "DEBUG" if config.ENVIRONMENT != "production" else "INFO")

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

LOG_FORMAT_FILE = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
    "{level: <8} | "
    "{name}:{function}:{line} | "
    "{message}"
)

_NATIONAL_ID_PATTERN = re.compile(r"(?<!\d)(\d{6})\d{7}(?!\d)")


def mask_national_ids(record):
    """Loguru patcher: keep the birth-date part of any national ID, hide the rest."""
    record["message"] = _NATIONAL_ID_PATTERN.sub(r"\1*******", record["message"])


def setup_logging():
    """Configure loguru sinks for console, full log file and warning/error file."""
    logger.remove()
    logger.configure(patcher=mask_national_ids)

    # Full tracebacks with local variables only outside production
    diagnose = config.ENVIRONMENT != "production"

    logger.add(
        sys.stderr,
        format=LOG_FORMAT,
        level=LOG_LEVEL,
        colorize=True,
        backtrace=True,
        diagnose=diagnose,
    )

    logger.add(
        LOG_FILE,
        format=LOG_FORMAT_FILE,
        level=LOG_LEVEL,
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        backtrace=True,
        diagnose=diagnose,
        enqueue=True,  # Thread-safe
    )

    logger.add(
        ERROR_LOG_FILE,
        format=LOG_FORMAT_FILE,
        level="WARNING",
        rotation="10 MB",
        retention="14 days",
        compression="zip",
        backtrace=True,
        diagnose=diagnose,
        enqueue=True,
    )

    logger.info(f"Logging initialized. Log file: {LOG_FILE}")
    return logger


# Initialize logging on import
setup_logging()
