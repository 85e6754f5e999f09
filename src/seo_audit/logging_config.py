"""Logging setup for the audit CLI and embedding applications."""

import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

from seo_audit.exceptions import ConfigurationError

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# SDK and browser loggers that are chatty at INFO
NOISY_LOGGERS = ('httpx', 'httpcore', 'openai', 'anthropic', 'playwright', 'asyncio')


def _parse_level(level: str) -> int:
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ConfigurationError(f"Unknown log level {level!r}")
    return numeric_level


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Configure the root logger.

    Log records go to stderr so that stdout only carries command output
    (the ``--json`` reports in particular).

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path; parent directories are created
        format_string: Optional custom format string
        quiet: Logger names capped at WARNING

    Raises:
        ConfigurationError: If ``level`` is not a logging level name
    """
    numeric_level = _parse_level(level)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=numeric_level,
        format=format_string or LOG_FORMAT,
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    for name in quiet:
        logging.getLogger(name).setLevel(max(logging.WARNING, numeric_level))
