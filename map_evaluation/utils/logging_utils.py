"""
Logging setup shared by the evaluation entry points.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

VERBOSITY_LEVELS = {
    0: logging.WARNING,
    1: logging.INFO,
    2: logging.DEBUG,
}


def verbosity_to_level(verbosity: int) -> int:
    """Map CLI verbosity (0 quiet, 1 info, 2 verbose) to a logging level."""
    if verbosity <= 0:
        return VERBOSITY_LEVELS[0]
    return VERBOSITY_LEVELS.get(verbosity, logging.DEBUG)


def setup_logging(level: int = logging.INFO,
                  log_dir: Optional[Path] = None,
                  save_to_file: bool = False,
                  name: str = 'map_evaluation') -> logging.Logger:
    """
    Configure console (and optionally file) logging for the package logger.

    Args:
        level: Console logging level
        log_dir: Directory for the timestamped log file
        save_to_file: Also write a DEBUG-level log file to log_dir
        name: Logger to configure

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    # Repeated setup (tests, several runs in one process) must not stack handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    # Console handler
    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(formatter)
    logger.addHandler(ch)

    # File handler
    if save_to_file and log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        fh = logging.FileHandler(log_dir / f'map_evaluation_{timestamp}.log')
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

    return logger
