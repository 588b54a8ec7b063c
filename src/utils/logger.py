"""
Logging Module for the Mango Owner Monitor

Console output is plain text for whoever is watching the terminal; the
optional rotating log file can be switched to one JSON object per line.
Alert and iteration-failure helpers attach their fields as record extras so
they show up as keys in the JSON output.

Usage:
    logger = get_logger(__name__)
    logger.info("Snapshot loaded", extra={'accounts': 12})
"""

import logging
import logging.handlers
import os
import sys
import json
from datetime import datetime, timezone
from typing import Optional

from config.constants import (
    LOG_LEVEL,
    LOG_FILE_PATH,
    MAX_LOG_FILE_SIZE,
    LOG_BACKUP_COUNT,
    STRUCTURED_LOGGING,
)


_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Standard LogRecord attributes; anything else on a record came from `extra`
_RECORD_FIELDS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'asctime'}
_SCALARS = (str, int, float, bool, type(None), dict, list)


class JSONFormatter(logging.Formatter):
    """One JSON object per record, extras flattened into the top level"""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            'ts': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'msg': record.getMessage(),
            'where': f"{record.module}:{record.lineno}",
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_FIELDS and isinstance(value, _SCALARS)
        )
        if record.exc_info:
            exc_type, exc, _ = record.exc_info
            payload['exc_type'] = exc_type.__name__
            payload['exc'] = str(exc)
            payload['trace'] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PlainTextFormatter(logging.Formatter):
    """`time | LEVEL | logger | message` with the traceback on following lines"""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
            datefmt=_DATE_FORMAT,
        )


def _handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    structured: Optional[bool] = None
) -> None:
    """
    Install the monitor's handlers on the root logger, replacing any others.

    Args:
        log_level: One of DEBUG, INFO, WARNING, ERROR, CRITICAL (any case).
                   Defaults to LOG_LEVEL.
        log_file: Rotating log file; defaults to LOG_FILE_PATH, '' means console only
        structured: JSON lines in the log file; defaults to STRUCTURED_LOGGING

    Raises:
        ValueError: On an unknown level name
    """
    level_name = (log_level or LOG_LEVEL).upper()
    if level_name not in _LEVELS:
        raise ValueError(f"Invalid log level: {log_level}. Must be one of {', '.join(_LEVELS)}")
    level = logging.getLevelName(level_name)
    filepath = LOG_FILE_PATH if log_file is None else log_file
    use_json = STRUCTURED_LOGGING if structured is None else structured

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)

    root_logger.addHandler(_handler(logging.StreamHandler(sys.stdout), level, PlainTextFormatter()))

    if filepath:
        os.makedirs(os.path.dirname(filepath) or '.', exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            filepath, maxBytes=MAX_LOG_FILE_SIZE, backupCount=LOG_BACKUP_COUNT
        )
        root_logger.addHandler(
            _handler(rotating, level, JSONFormatter() if use_json else PlainTextFormatter())
        )

    get_logger(__name__).info(
        f"Logging at {level_name}" + (f" to {filepath}" if filepath else " (console only)"),
        extra={'structured_logging': use_json}
    )


def get_logger(name: str) -> logging.Logger:
    """Module logger; call with __name__"""
    return logging.getLogger(name)


def log_alert_event(
    logger: logging.Logger,
    market: str,
    owner: str,
    size: float,
    price: float,
    **details
) -> None:
    """
    Log a large-order alert as one WARNING line with structured fields.

    Example:
        log_alert_event(logger, 'SOL-PERP', owner='9xQe...', size=1.5, price=101.2)
    """
    details.update({
        'event_type': 'LARGE_ORDER',
        'market': market,
        'owner': owner,
        'size': size,
        'price': price,
    })
    logger.warning(
        f"[{market}] owner: {owner} - size: {size} - price: {price}",
        extra=details
    )


def log_error_with_context(
    logger: logging.Logger,
    message: str,
    error: Exception,
    **context
) -> None:
    """
    Log an error with full context and exception details.

    Example:
        try:
            await assembler.load(account)
        except RpcError as e:
            log_error_with_context(logger, "Snapshot failed", e, iteration=12)
    """
    context['error_type'] = type(error).__name__
    context['error_message'] = str(error)
    logger.error(message, exc_info=error, extra=context)
