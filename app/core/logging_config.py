"""
Application-wide logging configuration helpers.

All modules log through ``logging.getLogger(__name__)``; this module wires the
root handler once. Every line carries the organization and upload it belongs
to, taken from ``upload_log_context`` so tenant traffic can be told apart
without threading ids through each log call.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from logging.config import dictConfig
from typing import Iterator, Optional


_is_configured = False

_NO_CONTEXT = "-"
_org_id_var: ContextVar[str] = ContextVar("log_org_id", default=_NO_CONTEXT)
_upload_id_var: ContextVar[str] = ContextVar("log_upload_id", default=_NO_CONTEXT)

# Third-party loggers that are too chatty at INFO for upload traffic.
_QUIET_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3")


class UploadContextFilter(logging.Filter):
    """Stamp ``org_id`` and ``upload_id`` from the current context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.org_id = _org_id_var.get()
        record.upload_id = _upload_id_var.get()
        return True


@contextmanager
def upload_log_context(org_id: Optional[str] = None, upload_id: Optional[str] = None) -> Iterator[None]:
    """Tag log lines emitted inside the block with an organization and/or upload."""
    tokens = []
    if org_id is not None:
        tokens.append((_org_id_var, _org_id_var.set(org_id)))
    if upload_id is not None:
        tokens.append((_upload_id_var, _upload_id_var.set(upload_id)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure root and application loggers if they have not been configured yet.

    Args:
        level: Optional log level override (e.g., "DEBUG", "INFO").
    """
    global _is_configured

    if _is_configured:
        return

    log_level = (level or "INFO").upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "upload_context": {"()": UploadContextFilter},
            },
            "formatters": {
                "standard": {
                    "format": (
                        "%(asctime)s | %(levelname)-7s | %(name)s | "
                        "org=%(org_id)s upload=%(upload_id)s | %(message)s"
                    ),
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "filters": ["upload_context"],
                    "level": log_level,
                }
            },
            "root": {
                "handlers": ["console"],
                "level": log_level,
            },
            "loggers": {
                name: {"level": "WARNING"} for name in _QUIET_LOGGERS
            },
        }
    )

    logging.getLogger("app").setLevel(log_level)

    _is_configured = True
