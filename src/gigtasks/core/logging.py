# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
gigtasks.core.logging
=====================

Structured logging for the task service built on the stdlib `logging` tree:
- Request-scoped context via contextvars (task_id, user_id, routing_key, ...).
- JSON formatter for containers, human formatter for local debugging.
- LoggerAdapter that accepts arbitrary keyword fields:

      log.info("task.assigned", event="lifecycle.assign.ok", task_id=tid)

- The package logger is silent (NullHandler) until an app or test enables output.
"""

import contextvars
import json
import logging
import os
import sys
from collections.abc import Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, ClassVar, Final

__all__ = [
    "bind_context",
    "configure_from_env",
    "disable_stdout_logging",
    "enable_stdout_logging",
    "get_logger",
    "log_context",
    "set_level",
    "swallow",
]

ROOT_LOGGER_NAME: Final[str] = "gigtasks"

# ---------- Context ----------

_log_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar("gigtasks_log_ctx", default=None)


def _ctx_copy() -> dict[str, Any]:
    ctx = _log_context.get()
    return dict(ctx) if ctx else {}


def bind_context(**fields: Any) -> None:
    """Merge fields into the current structured log context (None values are skipped)."""
    ctx = _ctx_copy()
    ctx.update({k: v for k, v in fields.items() if v is not None})
    _log_context.set(ctx)


@contextmanager
def log_context(**fields: Any):
    """Temporarily add fields to the structured log context."""
    token = _log_context.set({**_ctx_copy(), **{k: v for k, v in fields.items() if v is not None}})
    try:
        yield
    finally:
        _log_context.reset(token)


# ---------- Formatters ----------

_STD_ATTRS: Final[frozenset[str]] = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "asctime",
    }
)


def _iso_utc_ms(ts: float) -> str:
    dt = datetime.fromtimestamp(ts, tz=UTC)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _exc_tuple(record: logging.LogRecord):
    ei = record.exc_info
    if not ei:
        return None
    if isinstance(ei, BaseException):
        return (type(ei), ei, ei.__traceback__)
    if ei is True:
        return sys.exc_info()
    return ei


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line: ts, level, logger, message, bound context,
    extra fields and a compact `error` object when an exception is attached.
    """

    def __init__(self, *, include_stack: bool = False) -> None:
        super().__init__()
        self.include_stack = include_stack

    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": _iso_utc_ms(record.created),
            "level": record.levelname,
            "logger": record.name,
        }
        msg = record.getMessage()
        if msg:
            out["message"] = msg

        ctx = _log_context.get()
        if ctx:
            out.update(ctx)

        for k, v in record.__dict__.items():
            if k in _STD_ATTRS or k in out:
                continue
            out[k] = v

        exc = _exc_tuple(record)
        if exc:
            err = out.setdefault("error", {})
            err["type"] = exc[0].__name__ if exc[0] else "Exception"
            err["message"] = str(exc[1]) if exc[1] else None
            if self.include_stack:
                err["stack"] = self.formatException(exc)

        return json.dumps(out, ensure_ascii=False, separators=(",", ":"), default=str)


class HumanFormatter(logging.Formatter):
    """Compact human-friendly formatter for local debugging."""

    default_time_format = "%Y-%m-%d %H:%M:%S"
    default_msec_format = "%s.%03d"
    context_keys: ClassVar[tuple[str, ...]] = ("task_id", "user_id", "routing_key", "op")

    def format(self, record: logging.LogRecord) -> str:
        s = f"{self.formatTime(record)} {record.levelname:<5} {record.name}: {record.getMessage()}"
        ctx = _log_context.get()
        if ctx:
            compact = {k: ctx[k] for k in self.context_keys if ctx.get(k) is not None}
            if compact:
                s += "  [" + ", ".join(f"{k}={v}" for k, v in compact.items()) + "]"
        exc = _exc_tuple(record)
        if exc:
            s += "\n" + self.formatException(exc)
        return s


# ---------- Filters / adapter ----------


class ContextFilter(logging.Filter):
    """Copy the current log context onto each LogRecord (visible to caplog and handlers)."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = _log_context.get()
        if ctx:
            for k, v in ctx.items():
                if k not in record.__dict__:
                    record.__dict__[k] = v
        return True


class _LevelRangeFilter(logging.Filter):
    def __init__(self, *, min_level: int = logging.NOTSET, max_level: int = logging.CRITICAL) -> None:
        super().__init__()
        self.min_level = min_level
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return self.min_level <= record.levelno <= self.max_level


class _KwExtraAdapter(logging.LoggerAdapter):
    """Move unknown keyword arguments into `extra={...}`."""

    _passthrough: ClassVar[frozenset[str]] = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})

    def process(self, msg, kwargs):
        extra = kwargs.get("extra")
        if not isinstance(extra, dict):
            extra = {}
        for k in list(kwargs.keys()):
            if k in self._passthrough:
                continue
            v = kwargs.pop(k)
            key = f"field_{k}" if k in _STD_ATTRS else k
            extra.setdefault(key, v)
        kwargs["extra"] = extra
        return msg, kwargs


# ---------- Public configuration API ----------

_configured = False
_stdout_handler_key = "_gigtasks_stdout_handler"
_stderr_handler_key = "_gigtasks_stderr_handler"


def _bootstrap_minimal() -> None:
    global _configured
    if _configured:
        return
    lg = logging.getLogger(ROOT_LOGGER_NAME)
    lg.setLevel(logging.DEBUG)
    if not any(isinstance(h, logging.NullHandler) for h in lg.handlers):
        lg.addHandler(logging.NullHandler())
    if not any(isinstance(f, ContextFilter) for f in lg.filters):
        lg.addFilter(ContextFilter())
    _configured = True


def get_logger(name: str | None = None) -> logging.LoggerAdapter:
    """Return a `gigtasks.<name>` logger adapter that accepts keyword fields."""
    _bootstrap_minimal()
    base = logging.getLogger(ROOT_LOGGER_NAME)
    target = base.getChild(name) if name else base
    return _KwExtraAdapter(target, {})


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    val = getattr(logging, str(level).upper(), None)
    if isinstance(val, int):
        return val
    raise ValueError(f"Invalid level name: {level!r}")


def set_level(level: int | str) -> None:
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(_resolve_level(level))


def enable_stdout_logging(
    *,
    level: int | str = logging.DEBUG,
    json_output: bool = True,
    include_stack: bool = False,
    pretty: bool = False,
    route_errors_to_stderr: bool = False,
) -> None:
    """
    Attach stream handlers.

    - pretty=True -> HumanFormatter, else JsonFormatter when json_output=True
    - route_errors_to_stderr=True -> ERROR+ to stderr, the rest to stdout
    """
    lvl = _resolve_level(level)
    _bootstrap_minimal()
    lg = logging.getLogger(ROOT_LOGGER_NAME)
    disable_stdout_logging()
    lg.setLevel(lvl)

    fmt: logging.Formatter
    if pretty:
        fmt = HumanFormatter()
    elif json_output:
        fmt = JsonFormatter(include_stack=include_stack)
    else:
        fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    if route_errors_to_stderr:
        h_out = logging.StreamHandler(sys.stdout)
        h_out.set_name(_stdout_handler_key)
        h_out.setLevel(lvl)
        h_out.addFilter(_LevelRangeFilter(max_level=logging.WARNING))
        h_out.setFormatter(fmt)
        lg.addHandler(h_out)

        h_err = logging.StreamHandler(sys.stderr)
        h_err.set_name(_stderr_handler_key)
        h_err.setLevel(max(lvl, logging.ERROR))
        h_err.addFilter(_LevelRangeFilter(min_level=logging.ERROR))
        h_err.setFormatter(fmt)
        lg.addHandler(h_err)
    else:
        h = logging.StreamHandler(sys.stdout)
        h.set_name(_stdout_handler_key)
        h.setLevel(lvl)
        h.setFormatter(fmt)
        lg.addHandler(h)


def disable_stdout_logging() -> None:
    lg = logging.getLogger(ROOT_LOGGER_NAME)
    for h in list(lg.handlers):
        if h.get_name() in (_stdout_handler_key, _stderr_handler_key):
            lg.removeHandler(h)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("1", "true", "yes", "on")


def configure_from_env() -> None:
    """
    Env:
      - GIGTASKS_LOG_STDOUT=1|true
      - GIGTASKS_LOG_LEVEL=DEBUG|INFO|...
      - GIGTASKS_LOG_PRETTY=1
      - GIGTASKS_LOG_STACK=1
    """
    level = os.getenv("GIGTASKS_LOG_LEVEL", "DEBUG")
    pretty = _env_flag("GIGTASKS_LOG_PRETTY")

    _bootstrap_minimal()
    set_level(level)
    if _env_flag("GIGTASKS_LOG_STDOUT"):
        enable_stdout_logging(
            level=level, json_output=not pretty, include_stack=_env_flag("GIGTASKS_LOG_STACK"), pretty=pretty
        )
    else:
        disable_stdout_logging()


@contextmanager
def swallow(
    *,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
    level: int = logging.DEBUG,
    code: str,
    msg: str | None = None,
    reraise: bool = False,
    extra: Mapping[str, Any] | None = None,
    expected: bool = True,
):
    """
    Replace `try/except: pass` with structured logging.

    Example:
        with swallow(logger=log, code="bus.kafka.producer.stop", msg="producer stop failed"):
            await producer.stop()
    """
    base_logger = logger or get_logger("swallow")
    adapter = base_logger if isinstance(base_logger, logging.LoggerAdapter) else _KwExtraAdapter(base_logger, {})
    try:
        yield
    except Exception:
        payload: dict[str, Any] = {"code": code, "expected": expected}
        if extra:
            payload.update(dict(extra))
        adapter.log(level, msg or "Suppressed exception", exc_info=True, **payload)
        if reraise:
            raise


_bootstrap_minimal()
