"""Logging setup: rich console output plus a JSON lines file per day."""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

# Structured fields that callers attach through ``extra=`` or a stack logger
STRUCTURED_FIELDS = ('stack_name', 'node_id', 'change_set', 'operation', 'duration')

NOISY_LOGGERS = ('boto3', 'botocore', 's3transfer', 'urllib3')


class JSONFormatter(logging.Formatter):
    """One JSON object per record, including the structured fields present."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'thread': record.threadName,
            'message': record.getMessage(),
        }
        for field_name in STRUCTURED_FIELDS:
            value = getattr(record, field_name, None)
            if value is not None:
                entry[field_name] = value
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class SubjectPrefixFilter(logging.Filter):
    """Prefix console messages with the stack or work graph node they concern.

    Stacks deploy concurrently, so interleaved lines would be ambiguous
    without the prefix.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        subject = getattr(record, 'stack_name', None) or getattr(record, 'node_id', None)
        if subject and not getattr(record, '_prefixed', False):
            record.msg = f"[{subject}] {record.msg}"
            record._prefixed = True
        return True


def setup_logging(log_level: str = 'info', log_dir: Optional[str] = '.stack-deploy/logs') -> None:
    """Configure the root logger.

    Args:
        log_level: Console level (debug, info, warning, error)
        log_dir: Directory for the JSON log file, which always records
            debug output; None logs to the console only
    """
    level = getattr(logging, log_level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if log_dir else level)
    root_logger.handlers.clear()

    console_handler = RichHandler(
        console=Console(file=sys.stderr),
        show_path=False,
        rich_tracebacks=True,
        markup=False
    )
    console_handler.setLevel(level)
    console_handler.addFilter(SubjectPrefixFilter())
    root_logger.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        log_file = log_path / f"stack-deploy-{datetime.now(timezone.utc).strftime('%Y%m%d')}.jsonl"
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def get_stack_logger(name: str, stack_name: str) -> logging.LoggerAdapter:
    """Get a logger that tags every record with the stack it concerns.

    Stacks deploy on worker threads, so the stack name travels on the
    adapter rather than on a process-wide record factory.

    Args:
        name: Name of the logger (typically __name__)
        stack_name: Name of the stack being deployed

    Returns:
        Logger adapter adding a ``stack_name`` field
    """
    return logging.LoggerAdapter(logging.getLogger(name), {'stack_name': stack_name})
