"""Levelled console logging."""

from __future__ import annotations

import datetime
import sys
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Optional


class LogType(IntEnum):
    DEBUG = 0
    LOG = 1
    INFO = 2
    WARN = 3
    ERROR = 4


_verbose_level = LogType.WARN


def set_verbose_level(level: LogType) -> None:
    """Set the lowest level that gets printed."""
    global _verbose_level
    _verbose_level = LogType(level)


def get_verbose_level() -> LogType:
    return _verbose_level


@dataclass
class LogUnit:
    log_type: LogType
    data: str
    time: int
    time_str: str

    def error(self) -> Exception:
        """Return an exception carrying this entry's text."""
        return RuntimeError(self.data)


_NAMES = {
    LogType.LOG: "ALOG",
    LogType.INFO: "INFO",
    LogType.WARN: "WARN",
    LogType.ERROR: "ERRO",
}


def log_type_to_str(log_type: LogType) -> str:
    return _NAMES.get(log_type, "UDEF")


def print_log_unit(unit: LogUnit) -> None:
    """Write ``unit`` to stdout (up to WARN) or stderr, if it passes the level."""
    if unit.log_type < _verbose_level:
        return
    stream = sys.stdout if unit.log_type <= LogType.WARN else sys.stderr
    stream.write(f"{log_type_to_str(unit.log_type)} | {unit.time_str} | {unit.data}")


def log_base(log_type: LogType, *args: Any) -> LogUnit:
    """Build an entry from ``args`` joined by spaces, print it and return it."""
    now = datetime.datetime.now().astimezone()
    unit = LogUnit(
        log_type=LogType(log_type),
        data=" ".join(str(a) for a in args) + "\n",
        time=time.time_ns(),
        time_str=now.isoformat(timespec="seconds"),
    )
    print_log_unit(unit)
    return unit


def log(*args: Any) -> LogUnit:
    return log_base(LogType.LOG, *args)


def info(*args: Any) -> LogUnit:
    return log_base(LogType.INFO, *args)


def warn(*args: Any) -> LogUnit:
    return log_base(LogType.WARN, *args)


def error(*args: Any) -> LogUnit:
    return log_base(LogType.ERROR, *args)


def error_with(err: Optional[BaseException], *args: Any) -> LogUnit:
    """Log an error entry, appending the text of ``err`` when given."""
    if err is not None:
        args = (*args, str(err))
    return log_base(LogType.ERROR, *args)


def wrap_error_pure(desc: str, err: Any) -> Optional[BaseException]:
    """Normalise a caught value into an exception and log it.

    Strings become RuntimeError, exceptions pass through, anything else
    becomes ``RuntimeError("unknown error")``; ``None`` yields ``None``.
    """
    if err is None:
        return None
    if isinstance(err, str):
        result: BaseException = RuntimeError(err)
    elif isinstance(err, BaseException):
        result = err
    else:
        result = RuntimeError("unknown error")
    log_base(LogType.ERROR, f"Unexpected Error | {desc}, error={result}")
    return result


def wrap_error(desc: str, fn: Callable[[], Any], *args: Callable[[BaseException], Any]) -> Optional[BaseException]:
    """Run ``fn``, logging any exception it raises.

    Each callable in ``args`` is called with the exception. The exception is
    returned, or ``None`` when ``fn`` finished normally.
    """
    try:
        fn()
    except Exception as exc:  # noqa: BLE001 - every failure is reported
        caught = wrap_error_pure(desc, exc)
    else:
        return None
    if caught is not None:
        for handler in args:
            handler(caught)
    return caught