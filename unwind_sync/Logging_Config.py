# Logging_Config.py
# Description: Configuration for logging
#
# Imports
import logging
import logging.handlers
import sys
from typing import Any, Dict, Optional
#
# 3rd-Party Imports
from loguru import logger as loguru_logger
#
# Local Imports
from unwind_sync.config import get_log_file_path, get_setting
#
########################################################################################################################
#
# Functions:

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s:%(lineno)d - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LOGURU_TO_STD_LEVEL = {
    "TRACE": logging.DEBUG, "DEBUG": logging.DEBUG, "INFO": logging.INFO,
    "SUCCESS": logging.INFO, "WARNING": logging.WARNING, "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def sink_to_standard_logging(message):
    """Loguru sink that re-emits every record through the stdlib logger of the same name."""
    record = message.record
    std_level = _LOGURU_TO_STD_LEVEL.get(record["level"].name, logging.INFO)
    std_logger = logging.getLogger(record["name"])
    if record["exception"]:
        std_logger.log(std_level, record["message"], exc_info=record["exception"])
    else:
        std_logger.log(std_level, record["message"])


def configure_logging(settings: Optional[Dict[str, Any]] = None, log_to_file: bool = True) -> logging.Logger:
    """
    Sets up all logging handlers, including Loguru integration.

    Loguru is routed into the stdlib root logger, which gets a console
    handler and (optionally) a RotatingFileHandler. Safe to call again; old
    root handlers are replaced.
    """
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    loguru_logger.remove()
    loguru_logger.add(sink_to_standard_logging, level="TRACE",
                      format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    log_level_str = str(get_setting("general", "log_level", "INFO", settings=settings)).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    root_logger.setLevel(log_level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_to_file:
        try:
            log_file_path = get_log_file_path(settings)
            max_bytes = int(get_setting("logging", "log_max_bytes", 10485760, settings=settings))
            backup_count = int(get_setting("logging", "log_backup_count", 5, settings=settings))
            file_log_level_str = str(get_setting("logging", "file_log_level", "INFO", settings=settings)).upper()
            file_log_level = getattr(logging, file_log_level_str, logging.INFO)

            file_handler = logging.handlers.RotatingFileHandler(
                log_file_path, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8'
            )
            file_handler.setLevel(file_log_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
            # Root must let through whatever the most verbose handler wants
            root_logger.setLevel(min(log_level, file_log_level))
            logging.info(f"Standard Logging: Added RotatingFileHandler (File: '{log_file_path}', "
                         f"Level: {logging.getLevelName(file_log_level)}).")
        except (OSError, ValueError) as e:
            logging.warning(f"Could not set up file logging: {e}")

    logging.debug(f"Logging configured. Root level: {logging.getLevelName(root_logger.level)}")
    return root_logger

#
# End of Logging_Config.py
########################################################################################################################
