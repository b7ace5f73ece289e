"""
Strata Structured Logger
=========================

Structured logging for the decoder, layered on the standard
:mod:`logging` module.

Every record emitted through a :class:`StrataLogger` is tagged with the
*component* that produced it and the decoder *stage* in progress
(``"headers"``, ``"imports"``, ``"exports"`` ...).  Records can go to:

    - a Rich console handler on stderr,
    - a rotating log file, as plain text or as JSON lines,
    - nowhere of our own: the library default, where records propagate to
      whatever handlers the host application has configured.

A logger with no output of its own writes through the shared
``strata.<component>`` logger and never touches its handlers or level.  A
logger with a console or file sink writes through a private child logger
that is built once per distinct sink configuration and then reused, so
loggers with different settings never replace each other's handlers.

References:
    - Python logging HOWTO. https://docs.python.org/3/howto/logging.html
    - Rich library. https://github.com/Textualize/rich
"""

from __future__ import annotations

import json
import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterator, Optional, TYPE_CHECKING

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

if TYPE_CHECKING:
    from shared.config import GlobalConfig

_LOGGER_ROOT = "strata"
_NO_STAGE = "-"
_STANDARD_KEYS = frozenset({"exc_info", "stack_info", "stacklevel"})

_sinks: dict[tuple[Any, ...], logging.Logger] = {}
_sinks_lock = threading.Lock()

_TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(component)s/%(stage)s | %(message)s"
_CONSOLE_FORMAT = "%(component)s/%(stage)s: %(message)s"

_LOG_THEME = Theme(
    {
        "log.level.debug": "dim cyan",
        "log.level.info": "bold bright_blue",
        "log.level.warning": "bold yellow",
        "log.level.error": "bold red",
        "log.level.critical": "bold white on red",
    }
)


# ========================== Record plumbing ================================


class _StageDefaults(logging.Filter):
    """Give every record the ``component`` and ``stage`` attributes.

    The text and console formats reference both; records that did not go
    through :class:`StrataLogger` would otherwise fail to format.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "component", None) is None:
            record.component = record.name.rpartition(".")[2]
        if getattr(record, "stage", None) is None:
            record.stage = _NO_STAGE
        return True


class _JSONFormatter(logging.Formatter):
    """Render a record as one JSON object per line.

    Example::

        {"timestamp": "2024-05-01T12:00:00.123+00:00", "level": "WARNING",
         "logger": "strata.engine", "component": "engine", "stage": "imports",
         "message": "...", "extra": {"kind": "truncation", "offset": 1536}}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "component": getattr(record, "component", None),
            "message": record.getMessage(),
        }

        stage = getattr(record, "stage", None)
        if stage not in (None, _NO_STAGE):
            entry["stage"] = stage

        fields = getattr(record, "strata_extra", None)
        if fields:
            entry["extra"] = fields

        if record.exc_info and record.exc_info[1] is not None:
            entry["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class _ColorConsoleHandler(RichHandler):
    """Rich handler on stderr using the Strata level palette."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(
            console=Console(theme=_LOG_THEME, stderr=True),
            show_path=False,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            markup=False,
            **kwargs,
        )
        self.setFormatter(logging.Formatter(_CONSOLE_FORMAT))


def _build_handlers(
    level: int,
    log_file: str | Path | None,
    json_logs: bool,
    max_bytes: int,
    backup_count: int,
    console_output: bool,
) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []

    if console_output:
        handlers.append(_ColorConsoleHandler(level=level))

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=str(path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(
            _JSONFormatter()
            if json_logs
            else logging.Formatter(_TEXT_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")
        )
        handlers.append(file_handler)

    for handler in handlers:
        handler.addFilter(_StageDefaults())
    return handlers


def _logger_for(
    component: str,
    level: int,
    log_file: str | Path | None,
    json_logs: bool,
    max_bytes: int,
    backup_count: int,
    console_output: bool,
) -> logging.Logger:
    """Return the :class:`logging.Logger` that *component* writes through."""
    name = f"{_LOGGER_ROOT}.{component}"
    with _sinks_lock:
        if log_file is None and not console_output:
            shared = logging.getLogger(name)
            if not shared.handlers:
                shared.addHandler(logging.NullHandler())
            return shared

        resolved = str(Path(log_file).resolve()) if log_file is not None else None
        key = (component, level, resolved, json_logs, max_bytes, backup_count, console_output)
        sink = _sinks.get(key)
        if sink is None:
            sink = logging.getLogger(f"{name}.sink{len(_sinks)}")
            sink.setLevel(level)
            sink.propagate = False
            for handler in _build_handlers(
                level, log_file, json_logs, max_bytes, backup_count, console_output
            ):
                sink.addHandler(handler)
            _sinks[key] = sink
        return sink


class Stopwatch:
    """Elapsed wall-clock time of a :meth:`StrataLogger.timed` block."""

    __slots__ = ("started", "stopped")

    def __init__(self) -> None:
        self.started: float = time.perf_counter()
        self.stopped: Optional[float] = None

    @property
    def elapsed(self) -> float:
        """Seconds since the block was entered, frozen once it exits."""
        end = self.stopped if self.stopped is not None else time.perf_counter()
        return end - self.started


# ========================== StrataLogger ===================================


class StrataLogger:
    """Component logger that tags records with the current decoder stage.

    Usage::

        log = StrataLogger("engine", log_level="DEBUG", console_output=True)
        with log.stage("imports"):
            log.warning("thunk array truncated", offset=0x600)
        with log.timed("decode"):
            ...

    Keyword arguments other than the standard ``exc_info``,
    ``stack_info`` and ``stacklevel`` are collected into the record's
    ``strata_extra`` mapping.

    Args:
        component:       Name of the emitting component.
        log_level:       Minimum severity (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file:        Path of a rotating log file, ``None`` for no file.
        json_logs:       Write the log file as JSON lines.
        max_bytes:       Log-file size that triggers rotation (default 10 MiB).
        backup_count:    Rotated files to keep.
        console_output:  Attach a Rich console handler.
    """

    def __init__(
        self,
        component: str,
        *,
        log_level: str = "WARNING",
        log_file: str | Path | None = None,
        json_logs: bool = False,
        max_bytes: int = 10_485_760,
        backup_count: int = 5,
        console_output: bool = False,
    ) -> None:
        self._component = component
        self._stage: str | None = None
        self._level: int = getattr(logging, log_level.upper(), logging.WARNING)
        self._logger = _logger_for(
            component,
            self._level,
            log_file,
            json_logs,
            max_bytes,
            backup_count,
            console_output,
        )

    @classmethod
    def from_config(cls, component: str, settings: GlobalConfig) -> StrataLogger:
        """Build a logger from the ``[global]`` configuration section."""
        return cls(
            component,
            log_level="DEBUG" if settings.debug else settings.log_level,
            log_file=settings.log_file,
            json_logs=settings.log_json,
            console_output=settings.console_output,
        )

    # ------------------------------------------------------------------ #
    #  Scopes
    # ------------------------------------------------------------------ #

    @contextmanager
    def stage(self, name: str) -> Iterator[StrataLogger]:
        """Tag records logged inside the block with decoder stage *name*."""
        previous, self._stage = self._stage, name
        try:
            yield self
        finally:
            self._stage = previous

    @contextmanager
    def timed(self, label: str) -> Iterator[Stopwatch]:
        """Log the start and the duration of the block at DEBUG."""
        watch = Stopwatch()
        self.debug("%s started", label)
        try:
            yield watch
        finally:
            watch.stopped = time.perf_counter()
            elapsed_ms = watch.elapsed * 1000.0
            self.debug(
                "%s finished in %.3f ms", label, elapsed_ms,
                elapsed_ms=round(elapsed_ms, 3),
            )

    # ------------------------------------------------------------------ #
    #  Emission
    # ------------------------------------------------------------------ #

    def _log(self, level: int, msg: str, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        if level < self._level or not self._logger.isEnabledFor(level):
            return
        extra = dict(kwargs.pop("extra", None) or {})
        fields = {key: kwargs.pop(key) for key in list(kwargs) if key not in _STANDARD_KEYS}
        extra["component"] = self._component
        extra["stage"] = self._stage
        if fields:
            extra["strata_extra"] = fields
        self._logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, args, kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, args, kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, args, kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, args, kwargs)

    # ------------------------------------------------------------------ #
    #  Properties
    # ------------------------------------------------------------------ #

    @property
    def component(self) -> str:
        return self._component

    @property
    def level(self) -> int:
        """Minimum severity this logger emits."""
        return self._level

    @property
    def current_stage(self) -> str | None:
        return self._stage

    @property
    def underlying(self) -> logging.Logger:
        """The wrapped :class:`logging.Logger`."""
        return self._logger
