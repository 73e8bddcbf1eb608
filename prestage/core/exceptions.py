# SPDX-License-Identifier: LGPL-3.0-or-later
# prestage/core/exceptions.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


def _safe_int(x: Any, default: int = 1) -> int:
    try:
        return int(x)
    except Exception:
        return default


def _clamp_exit_code(code: int) -> int:
    # Exit codes are 0..255.
    if code < 0:
        return 1
    if code > 255:
        return 255
    return code


def _one_line(s: str, limit: int = 600) -> str:
    s = (s or "").strip().replace("\r", " ").replace("\n", " ")
    s = " ".join(s.split())
    return s if len(s) <= limit else (s[: limit - 3] + "...")


_SECRET_KEY_PARTS = (
    "pass",
    "password",
    "passwd",
    "secret",
    "token",
    "apikey",
    "api_key",
    "auth",
    "cookie",
    "session",
    "bearer",
    "private",
)

REDACTED = "***REDACTED***"


def _is_secret_key(k: str) -> bool:
    ks = (k or "").lower()
    return any(p in ks for p in _SECRET_KEY_PARTS)


def _redact_context(ctx: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in (ctx or {}).items():
        out[k] = REDACTED if _is_secret_key(str(k)) else v
    return out


def _format_context_compact(ctx: Dict[str, Any]) -> str:
    # Stable order, redaction, single-line.
    red = _redact_context(ctx)
    return ", ".join(f"{k}={red[k]!r}" for k in sorted(red.keys()))


class ExitCode:
    OK = 0
    FAILED = 1
    USAGE = 2

    AUTH = 10
    PRECONDITION = 11
    CONNECTIVITY = 12
    TOOL_MISSING = 13

    INTERRUPTED = 130


class FailureReason(str, Enum):
    """Why a single template ended the run in the Failed state."""

    PRECONDITION = "precondition"
    FILE_MISSING = "file_missing"
    CONVERSION = "conversion"
    UPLOAD = "upload"
    IMPORT = "import"
    CREATE_VM = "create_vm"
    ATTACH_DISK = "attach_disk"
    MARK_TEMPLATE_INCOMPLETE = "mark_template_incomplete"

    @property
    def is_precondition(self) -> bool:
        return self in (FailureReason.PRECONDITION, FailureReason.FILE_MISSING)


@dataclass(eq=False)
class PrestageError(Exception):
    """
    Base project error with:
      - stable fields for reporting/JSON
      - readable __str__ (what users see)
      - safe code handling (never crashes on int())
    """
    code: int = 1
    msg: str = "error"
    cause: Optional[BaseException] = None
    context: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        self.code = _clamp_exit_code(_safe_int(self.code, default=1))
        self.msg = _one_line(self.msg) or self.__class__.__name__
        if self.context is None:
            self.context = {}
        super().__init__(self.msg)
        self.args = (self.msg,)

    def user_message(self, *, include_context: bool = False, include_cause: bool = False) -> str:
        """
        Human-friendly message for CLI output/logs.
        """
        parts = [self.msg or self.__class__.__name__]

        if include_context and self.context:
            parts.append(f"[{_one_line(_format_context_compact(self.context))}]")

        if include_cause and self.cause is not None:
            parts.append(f"(cause: {type(self.cause).__name__}: {_one_line(str(self.cause))})")

        return " ".join(parts)

    def __str__(self) -> str:
        return self.user_message(include_context=False, include_cause=False)

    def to_dict(self, *, include_cause: bool = False) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "type": self.__class__.__name__,
            "code": self.code,
            "message": self.msg,
            "context": _redact_context(self.context),
        }
        if include_cause and self.cause is not None:
            d["cause"] = {"type": type(self.cause).__name__, "message": _one_line(str(self.cause))}
        return d


class Fatal(PrestageError):
    """
    User-facing fatal error (exit code should be honored by top-level main()).
    """
    pass


class ConnectivityError(Fatal):
    """Control plane unreachable or credentials rejected. Aborts the run."""

    def __post_init__(self) -> None:
        if self.code == 1:
            self.code = ExitCode.CONNECTIVITY
        super().__post_init__()


class PreconditionError(Fatal):
    """A cluster target object is missing. Aborts the run before any staging."""

    def __post_init__(self) -> None:
        if self.code == 1:
            self.code = ExitCode.PRECONDITION
        super().__post_init__()


@dataclass(eq=False)
class ClusterError(PrestageError):
    """
    A control-plane command failed.
    Carries the raw return code and stderr so callers can classify it.
    """
    returncode: Optional[int] = None
    stderr: str = ""


class ImportNotSupported(ClusterError):
    """The import facility cannot handle this input (capability, not a transient fault)."""
    pass


class ObjectExists(ClusterError):
    """A create/import call found the target name already taken."""
    pass


class ConversionError(PrestageError):
    """Image transform failed; isolated to one template."""
    pass


class ExtractionError(ConversionError):
    """OVA archive unreadable or carries no embedded disk image."""
    pass


@dataclass(eq=False)
class StagingError(PrestageError):
    """Per-template staging failure tagged with the reason reported in the summary."""
    reason: FailureReason = FailureReason.IMPORT


class UploadError(StagingError):
    def __post_init__(self) -> None:
        self.reason = FailureReason.UPLOAD
        super().__post_init__()


class DiskImportError(StagingError):
    def __post_init__(self) -> None:
        self.reason = FailureReason.IMPORT
        super().__post_init__()


class MarkTemplateIncomplete(StagingError):
    """Object was created but could not be confirmed as a template."""

    def __post_init__(self) -> None:
        self.reason = FailureReason.MARK_TEMPLATE_INCOMPLETE
        super().__post_init__()


def format_exception_for_cli(e: BaseException, *, verbose: int = 0) -> str:
    """
    One-liner output for CLI.

    verbose=0: just message
    verbose=1: message + compact context (if any)
    verbose>=2: message + context + cause
    """
    if isinstance(e, PrestageError):
        return e.user_message(
            include_context=(verbose >= 1),
            include_cause=(verbose >= 2),
        )

    if verbose >= 2:
        return f"{type(e).__name__}: {_one_line(str(e))}"
    return _one_line(str(e)) or type(e).__name__
