import logging
import sys
from pathlib import Path

from file_vault import config


def setup_logger(name: str = "file_vault") -> logging.Logger:
    """Return the vault logger, attaching its handlers on first use."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logs_dir = Path(config.BASE_DIR) / config.LOGS_DIR
    logs_dir.mkdir(exist_ok=True, parents=True)
    logger.setLevel(logging.DEBUG)

    # Everything goes to the log file, with the call site
    file_handler = logging.FileHandler(logs_dir / config.LOG_FILE)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
    ))

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(config.CONSOLE_LOG_LEVEL)
    console_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)
    return logger
