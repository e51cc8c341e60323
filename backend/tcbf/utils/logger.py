"""Root logger configuration.

Text output for local runs, JSON (python-json-logger) for log shippers.
Records emitted inside an expiry run carry the run id, and the entry id
while a single entry is being processed.
"""

import contextvars
import logging
import sys

from pythonjsonlogger import jsonlogger

ctx_job_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("job_run_id", default=None)
ctx_entry_id: contextvars.ContextVar[int | None] = contextvars.ContextVar("entry_id", default=None)

_NOISY_LOGGERS = ("apscheduler", "aiosqlite", "alembic", "sqlalchemy.engine", "httpx")


def _context_fields() -> dict:
    fields = {}
    job_run_id = ctx_job_run_id.get()
    if job_run_id:
        fields["job_run_id"] = job_run_id
    entry_id = ctx_entry_id.get()
    if entry_id:
        fields["entry_id"] = entry_id
    return fields


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record.update(_context_fields())


class CorrelationTextFormatter(logging.Formatter):
    """Plain text; appends ``[job_run_id=… entry_id=…]`` inside a run."""

    def format(self, record):
        line = super().format(record)
        fields = _context_fields()
        if not fields:
            return line
        tags = " ".join(f"{k}={v}" for k, v in fields.items())
        return f"{line} [{tags}]"


def setup_logger(log_format: str = "text", log_level: str = "INFO", stream=None):
    """Configure the root logger (replaces any handlers already installed)."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    if log_format.lower() == "json":
        handler.setFormatter(CorrelationJsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
        ))
    else:
        handler.setFormatter(CorrelationTextFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger
