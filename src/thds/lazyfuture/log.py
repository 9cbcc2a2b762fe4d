"""Keyword-context logging for lazyfuture.

Any keyword argument that isn't one of the standard logging kwargs is embedded as
context on the LogRecord, and `logger_context` adds context for everything further
down the stack (including async tasks spawned inside it):

```
logger = getLogger("thds.lazyfuture.future")
with logger_context(engagement="load-users"):
    logger.warning("second outcome delivered", outcome="succeed")
# 2024-03-01 10:01:16,825 WARNING thds.lazyfuture.future (engagement=load-users,outcome=succeed) second outcome delivered
```

The library never configures handlers at import time; call `basic_config` from your
application if you want the compact formatter on the console.
"""

import contextlib
import contextvars
import logging
import typing as ty

from . import config


def _parse_level(level: ty.Union[int, str]) -> int:
    """Accepts level numbers and level names in any case, e.g. `debug` or `10`."""
    if isinstance(level, int):
        return level
    level = level.strip().upper()
    if level.isdigit():
        return int(level)
    number = logging.getLevelName(level)
    if not isinstance(number, int):
        raise ValueError(f"Unknown log level {level!r}")
    return number


LOGLEVEL = config.item("thds.lazyfuture.log.level", logging.WARNING, parse=_parse_level)
MAX_NAME_LEN = config.item("thds.lazyfuture.log.max_name_len", 40, parse=int)

_LOGGING_KWARGS = ("exc_info", "stack_info", "stacklevel", "extra")
TH_REC_CTXT = "th_context"
_ROOT_NAME = "thds.lazyfuture"


class _KwContext(ty.Dict[str, ty.Any]):
    def __str__(self) -> str:
        return "(" + ",".join(f"{k}={v}" for k, v in self.items()) + ")"


_LOG_CONTEXT: contextvars.ContextVar[_KwContext] = contextvars.ContextVar(
    "lazyfuture log context", default=_KwContext()
)


@contextlib.contextmanager
def logger_context(**kwargs: ty.Any) -> ty.Iterator[None]:
    """Put some key-value pairs into the keyword-based logger context."""
    token = _LOG_CONTEXT.set(_KwContext(_LOG_CONTEXT.get(), **kwargs))
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


class KwLogger(logging.LoggerAdapter):
    """Passes extra keyword arguments straight through as context, without an `extra` dict."""

    def process(self, msg, kwargs):
        context = _LOG_CONTEXT.get()
        context_keys = [k for k in kwargs if k not in _LOGGING_KWARGS]
        if context_keys:
            context = _KwContext(context)
            context.update((k, kwargs.pop(k)) for k in context_keys)
        extra = kwargs["extra"] = dict(kwargs.get("extra") or dict())
        extra[TH_REC_CTXT] = context
        return msg, kwargs


def getLogger(name: ty.Optional[str] = None) -> KwLogger:
    """Library loggers inherit their level from the `thds.lazyfuture` logger, which starts
    out at LOGLEVEL, so `basic_config` or a plain `setLevel` there governs all of them.
    """
    if (name or "").startswith(_ROOT_NAME):
        root = logging.getLogger(_ROOT_NAME)
        if root.level == logging.NOTSET:
            root.setLevel(LOGLEVEL())
    return KwLogger(logging.getLogger(name), dict())


def context_of(record: logging.LogRecord) -> ty.Optional[ty.Dict[str, ty.Any]]:
    return getattr(record, TH_REC_CTXT, None)


class KwFormatter(logging.Formatter):
    """time, level, (shortened) logger name, keyword context, message."""

    @staticmethod
    def format_name(name: str) -> str:
        max_len = MAX_NAME_LEN()
        if len(name) > max_len:
            name = name[: max_len // 2 - 2] + "..." + name[-max_len // 2 + 1 :]
        return name.ljust(max_len)

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        context = context_of(record) or _KwContext()
        formatted = (
            f"{self.formatTime(record)} {record.levelname:7} {self.format_name(record.name)}"
            f" {context} {record.message}"
        )
        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            formatted += "\n" + record.exc_text
        if record.stack_info:
            formatted += "\n" + self.formatStack(record.stack_info)
        return formatted


def basic_config(level: ty.Optional[int] = None) -> logging.Handler:
    """Attach a console handler using KwFormatter to the library's root logger."""
    logger = logging.getLogger(_ROOT_NAME)
    handler = logging.StreamHandler()
    handler.setFormatter(KwFormatter())
    logger.addHandler(handler)
    logger.setLevel(LOGLEVEL() if level is None else level)
    return handler
