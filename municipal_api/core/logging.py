from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Optional, Union


# Context variables for enriched logging
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
sede_id_var: ContextVar[Optional[str]] = ContextVar("sede_id", default=None)
subject_id_var: ContextVar[Optional[str]] = ContextVar("subject_id", default=None)


class LoggingContextFilter(logging.Filter):
    """
    Logging filter that injects correlation_id, sede_id and subject_id from
    contextvars into each log record so formatters can include them.

    If no values are present in the context, placeholders are used.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        setattr(record, "correlation_id", correlation_id_var.get() or "-")
        setattr(record, "sede_id", sede_id_var.get() or "-")
        setattr(record, "subject_id", subject_id_var.get() or "-")
        return True


# PUBLIC_INTERFACE
def bind_identity(subject_id: object, sede_id: object) -> None:
    """Attach the authenticated subject and its sede to the current logging context."""
    subject_id_var.set(str(subject_id))
    sede_id_var.set(str(sede_id) if sede_id is not None else None)


# PUBLIC_INTERFACE
def configure_logging(level: Union[int, str] = logging.INFO) -> None:
    """Configure root logging with a structured format and context filter."""
    handler = logging.StreamHandler(stream=sys.stdout)
    fmt = (
        "%(asctime)s | %(levelname)s | %(name)s | cid=%(correlation_id)s | sede=%(sede_id)s | "
        "sub=%(subject_id)s | %(message)s"
    )
    formatter = logging.Formatter(fmt=fmt)
    handler.setFormatter(formatter)
    handler.addFilter(LoggingContextFilter())

    root = logging.getLogger()
    # Remove pre-existing default handlers configured elsewhere (e.g., basicConfig)
    for h in list(root.handlers):
        root.removeHandler(h)
    root.addHandler(handler)
    root.setLevel(level)
