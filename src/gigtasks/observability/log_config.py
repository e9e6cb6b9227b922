# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
gigtasks.observability.log_config
=================================

One-call logging setup for processes embedding the task service.

A thin facade over `gigtasks.core.logging` that also wires the credential
redaction filter from `gigtasks.security.redaction`. Importing this module does
not touch handlers; only `setup_logging()` / `install_redaction_filter()` do.
"""

import logging
from collections.abc import Mapping
from typing import Any, cast

from ..core import logging as corelog
from ..security.redaction import Redactor, redact_obj

__all__ = [
    "bind_context",
    "configure_from_env",
    "get_logger",
    "install_redaction_filter",
    "log_context",
    "set_level",
    "setup_logging",
]


class _RedactionFilter(logging.Filter):
    """
    Redacts `record.msg`, `record.args` and every non-standard attribute (the
    keyword fields the adapter turns into `extra`) before formatting.
    """

    _STD_ATTRS = corelog._STD_ATTRS

    def __init__(self, redactor: Redactor) -> None:
        super().__init__()
        self._redactor = redactor

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._redactor.redact_text(record.msg)
        elif isinstance(record.msg, Mapping):
            record.msg = redact_obj(record.msg, redactor=self._redactor)

        if isinstance(record.args, tuple):
            record.args = tuple(redact_obj(a, redactor=self._redactor) for a in record.args)
        elif isinstance(record.args, Mapping):
            record.args = redact_obj(cast(Mapping[str, Any], record.args), redactor=self._redactor)

        for k, v in list(record.__dict__.items()):
            if k in self._STD_ATTRS or k in ("msg", "args"):
                continue
            if v is not None and self._redactor.is_sensitive_key(k):
                record.__dict__[k] = self._redactor.redact_value(v)
            else:
                record.__dict__[k] = redact_obj(v, redactor=self._redactor)
        return True


def install_redaction_filter(redactor: Redactor, *, handlers: list[logging.Handler] | None = None) -> None:
    """
    Install a redaction filter on the `gigtasks` logger and its handlers.

    Logger filters only see records logged on that exact logger, so the filter is
    also attached to the handlers (or to `handlers`, when given) that receive the
    propagated records of `gigtasks.*` children. Re-installing replaces the old one.
    """
    base = logging.getLogger(corelog.ROOT_LOGGER_NAME)
    targets: list[logging.Filterer] = [base, *(handlers if handlers is not None else base.handlers)]
    for t in targets:
        for f in [f for f in t.filters if isinstance(f, _RedactionFilter)]:
            t.removeFilter(f)
        t.addFilter(_RedactionFilter(redactor))


bind_context = corelog.bind_context
log_context = corelog.log_context
get_logger = corelog.get_logger
set_level = corelog.set_level
configure_from_env = corelog.configure_from_env


def setup_logging(
    *,
    level: int | str = logging.INFO,
    json_output: bool = True,
    pretty: bool = False,
    include_stack: bool = False,
    route_errors_to_stderr: bool = False,
    redactor: Redactor | None = None,
) -> None:
    """
    Configure gigtasks logging for an application.

    Args:
        level: base log level.
        json_output: structured JSON lines (recommended for prod).
        pretty: human-readable output (overrides json_output).
        include_stack: include stack traces in JSON output.
        route_errors_to_stderr: ERROR+ to stderr, the rest to stdout.
        redactor: credential scrubbing policy; defaults to `Redactor()`.
    """
    corelog.set_level(level)
    corelog.enable_stdout_logging(
        level=level,
        json_output=not pretty and json_output,
        include_stack=include_stack,
        pretty=pretty,
        route_errors_to_stderr=route_errors_to_stderr,
    )
    install_redaction_filter(redactor or Redactor())
