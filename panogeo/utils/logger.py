"""Logging utilities"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

# Global variable to store log file path
_log_file_path = None


def setup_logger(
    name: str,
    level: int = logging.INFO,
    log_file: Optional[Union[str, Path]] = None,
    stream=None
) -> logging.Logger:
    """Setup logger with consistent formatting"""
    global _log_file_path

    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        # Console handler
        console_handler = logging.StreamHandler(stream or sys.stdout)
        console_handler.setLevel(level)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

        if log_file is not None:
            log_file = Path(log_file)
            try:
                log_file.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(str(log_file), mode='a', encoding='utf-8')
                file_handler.setLevel(logging.DEBUG)
                file_handler.setFormatter(formatter)
                logger.addHandler(file_handler)
                _log_file_path = log_file
                logger.info(f"Logging to: {log_file.absolute()}")
            except OSError as e:
                # Console logging still works without the file
                logger.warning(f"Could not set up file logging: {e}")

    return logger


def get_log_file_path() -> Optional[Path]:
    """Get the path to the log file"""
    return _log_file_path
