# SPDX-License-Identifier: LGPL-3.0-or-later
"""
Logging for prestage.

One named logger ("prestage") with a human formatter on stderr (emoji + level,
termcolor on a TTY) or NDJSON with --json-logs, plus an optional log file.
Per-template work logs through `Log.bind(logger, template=...)`, which tags
every line with the template name so parallel runs stay readable.
"""
from __future__ import annotations

import datetime as _dt
import json
import logging
import os
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from termcolor import colored as _colored

from ..vmware.vmware_utils import is_tty

TRACE = 5
if not hasattr(logging, "TRACE"):
    logging.TRACE = TRACE  # type: ignore[attr-defined]
    logging.addLevelName(TRACE, "TRACE")


def _logger_trace(self: logging.Logger, msg: str, *args, **kwargs) -> None:
    if self.isEnabledFor(TRACE):
        self._log(TRACE, msg, args, **kwargs)


if not hasattr(logging.Logger, "trace"):
    logging.Logger.trace = _logger_trace  # type: ignore[attr-defined]

# levelname -> (emoji, colour)
_LEVELS: Dict[str, Tuple[str, str]] = {
    "TRACE": ("🧬", "cyan"),
    "DEBUG": ("🔍", "blue"),
    "INFO": ("✅", "green"),
    "WARNING": ("⚠️", "yellow"),
    "ERROR": ("💥", "red"),
    "CRITICAL": ("🧨", "red"),
}

Ctx = Mapping[str, Any]


def c(
    text: str,
    color: Optional[str] = None,
    attrs: Optional[List[str]] = None,
    *,
    enable: bool = True,
) -> str:
    """Colorize text when enabled."""
    if not enable or not color:
        return text
    try:
        return _colored(text, color=color, attrs=attrs or [])
    except Exception:
        return text


def _stderr_is_unicode() -> bool:
    enc = getattr(sys.stderr, "encoding", None) or "utf-8"
    try:
        "✅".encode(enc)
    except (LookupError, UnicodeEncodeError):
        return False
    return True


def _one_line(v: Any, limit: int = 240) -> str:
    s = str(v).replace("\r", "\\r").replace("\n", "\\n")
    return s if len(s) <= limit else s[: limit - 1] + "…"


def _record_ctx(record: logging.LogRecord) -> Dict[str, Any]:
    ctx = getattr(record, "ctx", None)
    return dict(ctx) if ctx else {}


class TemplateLogAdapter(logging.LoggerAdapter):
    """
    Adapter carrying a fixed context (normally `template=<name>`).
    Call sites may still pass `extra={"ctx": {...}}`; it is layered on top.
    """

    def __init__(self, logger: logging.Logger, ctx: Optional[Ctx] = None):
        super().__init__(logger, extra={"ctx": dict(ctx or {})})

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> Tuple[Any, Dict[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["ctx"] = {**self.extra["ctx"], **(extra.get("ctx") or {})}
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **ctx: Any) -> "TemplateLogAdapter":
        return TemplateLogAdapter(self.logger, {**self.extra["ctx"], **ctx})

    def trace(self, msg: str, *args: Any, **kwargs: Any) -> None:
        if self.isEnabledFor(TRACE):
            self.log(TRACE, msg, *args, **kwargs)


@dataclass(frozen=True)
class LogStyle:
    color: bool = True
    unicode: bool = True
    show_ms: bool = False
    show_src: bool = False
    show_thread: bool = False  # worker thread name when staging in parallel
    utc: bool = False


class ConsoleFormatter(logging.Formatter):
    """
    `HH:MM:SS ✅ INFO     [debian-12-packer] message key=value`

    The `template` context key becomes the bracketed tag; other context keys
    trail the message.
    """

    def __init__(self, style: LogStyle):
        super().__init__()
        self._style = style

    def _clock(self, created: float) -> str:
        tz = _dt.timezone.utc if self._style.utc else None
        dt = _dt.datetime.fromtimestamp(created, tz=tz)
        return dt.strftime("%H:%M:%S.%f")[:-3] if self._style.show_ms else dt.strftime("%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        emoji, colour = _LEVELS.get(record.levelname, ("•", ""))
        if not self._style.unicode:
            emoji = "·"
        colour_on = self._style.color and is_tty(sys.stderr)

        ctx = _record_ctx(record)
        template = ctx.pop("template", None)

        where: List[str] = []
        if self._style.show_thread:
            where.append(record.threadName)
        if self._style.show_src:
            where.append(f"{record.module}:{record.lineno}")

        msg = record.getMessage()
        if record.levelno >= logging.WARNING:
            msg = c(msg, colour, attrs=["bold"], enable=colour_on)

        line = f"{self._clock(record.created)} {emoji} {c(record.levelname, colour, enable=colour_on):<8}"
        if where:
            line += " (" + " ".join(where) + ")"
        if template:
            line += " " + c(f"[{template}]", "magenta", enable=colour_on)
        line += " " + msg
        if ctx:
            line += " " + " ".join(f"{k}={_one_line(v)}" for k, v in sorted(ctx.items()))

        if record.exc_info:
            tb = "\n".join("  " + ln for ln in self.formatException(record.exc_info).splitlines())
            line += "\n" + c(tb, "red", enable=colour_on)
        return line


class NdjsonFormatter(logging.Formatter):
    """One JSON object per line; `template` is a top-level field when bound."""

    def format(self, record: logging.LogRecord) -> str:
        obj: Dict[str, Any] = {
            "ts": _dt.datetime.fromtimestamp(record.created, tz=_dt.timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "pid": os.getpid(),
            "thread": record.threadName,
            "module": record.module,
            "lineno": record.lineno,
        }
        ctx = _record_ctx(record)
        if "template" in ctx:
            obj["template"] = ctx.pop("template")
        if ctx:
            obj["ctx"] = ctx
        if record.exc_info:
            obj["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else "Exception"
            obj["traceback"] = self.formatException(record.exc_info)
        return json.dumps(obj, ensure_ascii=False, default=str)


_warned: set = set()
_warned_lock = threading.Lock()


class Log:
    @staticmethod
    def _level_from_flags(verbose: int, quiet: int) -> int:
        """
        -q WARNING, -qq ERROR, default INFO, -vv DEBUG, -vvv TRACE.
        Quiet wins over verbose.
        """
        if quiet >= 2:
            return logging.ERROR
        if quiet == 1:
            return logging.WARNING
        if verbose >= 3:
            return TRACE
        if verbose >= 2:
            return logging.DEBUG
        return logging.INFO

    @staticmethod
    def bind(logger: Union[logging.Logger, logging.LoggerAdapter], **ctx: Any) -> TemplateLogAdapter:
        if isinstance(logger, TemplateLogAdapter):
            return logger.bind(**ctx)
        if isinstance(logger, logging.LoggerAdapter):
            logger = logger.logger
        return TemplateLogAdapter(logger, ctx)

    @staticmethod
    def banner(logger: logging.Logger, title: str, *, char: str = "─") -> None:
        width = 72
        t = f" {title.strip()} "
        pad = char * max(8, (width - len(t)) // 2)
        logger.info((pad + t + pad)[:width])

    @staticmethod
    def step(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.info("➡️  %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def ok(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.info("✅ %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def warn(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.warning("⚠️  %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def fail(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.error("💥 %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def trace(logger: logging.Logger, msg: str, *args: Any, **ctx: Any) -> None:
        if logger.isEnabledFor(TRACE):
            logger.log(TRACE, msg, *args, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def warn_once(logger: logging.Logger, key: Union[str, Tuple[Any, ...]], msg: str, **ctx: Any) -> bool:
        """Warn once per process for `key`. Returns False when suppressed."""
        k = key if isinstance(key, str) else "|".join(_one_line(x, 160) for x in key)
        with _warned_lock:
            if k in _warned:
                return False
            _warned.add(k)
        Log.warn(logger, msg, **ctx)
        return True

    @staticmethod
    def setup(
        verbose: int = 0,
        log_file: Optional[str] = None,
        *,
        quiet: int = 0,
        color: Optional[bool] = None,
        json_logs: bool = False,
        utc: bool = False,
        logger_name: str = "prestage",
    ) -> logging.Logger:
        """
        (Re)configure the project logger. Safe to call twice: the second call
        happens once config files may have changed the logging keys.
        """
        logger = logging.getLogger(logger_name)
        logger.propagate = False
        level = Log._level_from_flags(verbose, quiet)
        logger.setLevel(level)

        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()

        style = LogStyle(
            color=True if color is None else bool(color),
            unicode=_stderr_is_unicode(),
            show_ms=verbose >= 3,
            show_src=verbose >= 3,
            show_thread=verbose >= 2,
            utc=utc,
        )
        sh = logging.StreamHandler(stream=sys.stderr)
        sh.setLevel(level)
        sh.setFormatter(NdjsonFormatter() if json_logs else ConsoleFormatter(style))
        logger.addHandler(sh)

        if log_file:
            fp = Path(log_file).expanduser().resolve()
            fp.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(fp, encoding="utf-8")
            fh.setLevel(level)
            # File logs never carry colour codes.
            file_style = LogStyle(color=False, unicode=style.unicode, show_ms=True, show_src=True, show_thread=True, utc=utc)
            fh.setFormatter(NdjsonFormatter() if json_logs else ConsoleFormatter(file_style))
            logger.addHandler(fh)

        logger.debug("Logger initialized (level=%s, pid=%s)", logging.getLevelName(level), os.getpid())
        Log.trace(logger, "TRACE enabled (verbose >= 3)")
        return logger
