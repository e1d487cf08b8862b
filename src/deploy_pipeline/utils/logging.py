"""Logging setup: rich console output plus a JSON-lines run log.

Structured fields (pipeline, stage, service) are held in a context variable
rather than on the logger, so concurrent runs in different threads never see
each other's fields. A single record factory copies the current fields onto
every record.
"""

import contextvars
import json
import logging
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, TextIO

from rich.console import Console
from rich.highlighter import NullHighlighter
from rich.logging import RichHandler

# Structured fields copied from log records into JSON output
STRUCTURED_FIELDS = ('pipeline', 'stage', 'service')

_fields: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar('deploy_pipeline_log_fields', default={})
_factory_lock = threading.Lock()
_factory_installed = False


def _install_record_factory() -> None:
    """Wrap the current record factory once per process."""
    global _factory_installed
    with _factory_lock:
        if _factory_installed:
            return
        base_factory = logging.getLogRecordFactory()

        def record_factory(*args, **kwargs):
            record = base_factory(*args, **kwargs)
            for key, value in _fields.get().items():
                setattr(record, key, value)
            return record

        logging.setLogRecordFactory(record_factory)
        _factory_installed = True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with the run's structured fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.utcfromtimestamp(record.created).isoformat() + 'Z',
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        entry.update({
            name: getattr(record, name)
            for name in STRUCTURED_FIELDS
            if hasattr(record, name)
        })
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class StageFormatter(logging.Formatter):
    """Prefixes console messages with the active stage."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        stage = getattr(record, 'stage', None)
        return f"[{stage}] {message}" if stage else message


def setup_logging(
    log_level: str = 'info',
    log_dir: Optional[str] = '.deploy-pipeline/logs',
    stream: Optional[TextIO] = None
) -> None:
    """Configure the root logger for a pipeline run.

    Args:
        log_level: Console level (debug, info, warning, error)
        log_dir: Directory for the daily JSON-lines file, or None for console only
        stream: Console stream, stdout by default
    """
    _install_record_factory()
    level = getattr(logging, log_level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if log_dir else level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        console=Console(file=stream or sys.stdout),
        show_path=False,
        markup=False,
        highlighter=NullHighlighter(),
        rich_tracebacks=True,
    )
    console_handler.setLevel(level)
    console_handler.setFormatter(StageFormatter("%(message)s"))
    root_logger.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path / f"pipeline-{datetime.utcnow():%Y%m%d}.jsonl")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)

    for noisy in ('boto3', 'botocore', 'urllib3'):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger; context fields apply once ``setup_logging`` or a ``LogContext`` ran."""
    return logging.getLogger(name)


class LogContext:
    """Adds structured fields to records logged in the current context.

    Contexts nest; inner fields override outer ones until the inner context
    exits. Fields are per thread (and per asyncio task).
    """

    def __init__(self, logger: logging.Logger, **fields: Any):
        self.logger = logger
        self.fields = fields
        self._token: Optional[contextvars.Token] = None

    def __enter__(self):
        _install_record_factory()
        self._token = _fields.set({**_fields.get(), **self.fields})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _fields.reset(self._token)
            self._token = None
