"""Logging infrastructure."""

import logging
import sys
from typing import Optional

import click

PACKAGE_LOGGER = 'branch_cycle'


class ConsoleFormatter(logging.Formatter):
    """Prefixes messages with their level tag, colored on a terminal."""

    TAGS = {
        'DEBUG': ('[DEBUG]', 'cyan'),
        'INFO': ('[INFO]', None),
        'WARNING': ('[WARN]', 'yellow'),
        'ERROR': ('[ERROR]', 'red'),
        'CRITICAL': ('[FATAL]', 'magenta'),
    }

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        tag, color = self.TAGS.get(record.levelname, (f"[{record.levelname}]", None))
        msg = record.getMessage()
        if self.use_color and color:
            formatted = click.style(f"{tag} {msg}", fg=color)
        else:
            formatted = f"{tag} {msg}"
        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)
        return formatted


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configures the package logger.

    Console output goes to stdout, colored when it is a terminal. With
    log_file, every record (DEBUG included) is also written there with
    timestamps.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    console.setFormatter(ConsoleFormatter(use_color=sys.stdout.isatty()))
    logger.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))
        logger.addHandler(file_handler)
    return logger
