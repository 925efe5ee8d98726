"""Centralized logging configuration for Gallery Pro"""

import os
import logging
import logging.handlers
from pathlib import Path

def setup_logging(service_name: str = "gallerypro") -> None:
    """
    Configure logging for Gallery Pro services

    Args:
        service_name: Name of the service, used for log file names
    """
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir_env = os.getenv("LOG_DIR")

    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    simple_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, filter at handler level
    root_logger.handlers.clear()

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, log_level, logging.INFO))
    console_handler.setFormatter(simple_formatter)
    root_logger.addHandler(console_handler)

    # File logging only when a log directory is configured
    if log_dir_env:
        log_dir = Path(log_dir_env)
        log_dir.mkdir(parents=True, exist_ok=True)

        main_log = log_dir / f"{service_name}.log"
        file_handler = logging.handlers.RotatingFileHandler(
            main_log,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(detailed_formatter)
        root_logger.addHandler(file_handler)

        error_log = log_dir / f"{service_name}_errors.log"
        error_handler = logging.handlers.RotatingFileHandler(
            error_log,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=3,
            encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(detailed_formatter)
        root_logger.addHandler(error_handler)

    # Reduce noise from chatty libraries
    noisy_loggers = {
        'uvicorn.access': logging.WARNING,
        'aiosqlite': logging.WARNING,
        'gallerypro.rules.evaluator': logging.INFO,  # per-rule match lines are DEBUG
    }

    for logger_name, level in noisy_loggers.items():
        logging.getLogger(logger_name).setLevel(level)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured for {service_name}")
    logger.info(f"Log level: {log_level}")
    if log_dir_env:
        logger.info(f"Log directory: {log_dir_env}")
