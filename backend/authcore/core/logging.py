import logging
import sys
import os
import json
from datetime import datetime, timezone

from authcore.core.config import Settings


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging"""

    def format(self, record):
        log_record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "props"):
            log_record.update(record.props)

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_record)


def setup_logging(settings: Settings) -> logging.Logger:
    """Configure logging with both file and console output"""

    log_dir = settings.LOG_DIR
    os.makedirs(log_dir, exist_ok=True)

    log_level = getattr(logging, settings.LOG_LEVEL.upper())

    logger = logging.getLogger("authcore")
    # Repeated app construction (tests, reloads) must not stack handlers
    if getattr(logger, "_authcore_configured", False):
        logger.setLevel(log_level)
        return logger

    file_handler = logging.FileHandler(os.path.join(log_dir, "authcore.log"))
    file_handler.setLevel(log_level)
    file_handler.setFormatter(JSONFormatter())

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    ))

    logger.setLevel(log_level)
    logger.addHandler(file_handler)
    logger.addHandler(console_handler)
    logger.propagate = False
    logger._authcore_configured = True

    # Set external loggers to warning
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logger.info(f"Logging system initialized. Log file: {os.path.join(log_dir, 'authcore.log')}")

    return logger
