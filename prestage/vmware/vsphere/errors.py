# SPDX-License-Identifier: LGPL-3.0-or-later
# prestage/vmware/vsphere/errors.py
# -*- coding: utf-8 -*-
"""Error classification and exit code handling for vSphere operations"""
from __future__ import annotations

import errno
import socket
import subprocess
from enum import Enum, IntEnum

from ...core.exceptions import (
    ClusterError,
    ConnectivityError,
    ConversionError,
    ExitCode,
    Fatal,
    ImportNotSupported,
    ObjectExists,
    PreconditionError,
)


class VsphereExitCode(IntEnum):
    OK = ExitCode.OK
    FAILED = ExitCode.FAILED
    USAGE = ExitCode.USAGE

    AUTH = ExitCode.AUTH
    PRECONDITION = ExitCode.PRECONDITION
    NETWORK = ExitCode.CONNECTIVITY
    TOOL_MISSING = ExitCode.TOOL_MISSING

    INTERRUPTED = ExitCode.INTERRUPTED


class ErrorClass(str, Enum):
    """What a failed control-plane call means for the caller's next move."""

    AUTH = "auth"
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    NOT_SUPPORTED = "not_supported"
    TRANSIENT = "transient"
    TOOL_MISSING = "tool_missing"
    OTHER = "other"


def _msg(e: BaseException) -> str:
    parts = [str(e)]
    stderr = getattr(e, "stderr", None)
    if isinstance(stderr, str) and stderr:
        parts.append(stderr)
    return " ".join(parts).lower()


def _is_tool_missing_error(e: BaseException) -> bool:
    if isinstance(e, FileNotFoundError):
        return True
    msg = _msg(e)
    return "executable file not found" in msg or "command not found" in msg


def _is_auth_error(e: BaseException) -> bool:
    msg = _msg(e)
    needles = [
        "not authenticated",
        "authentication",
        "unauthorized",
        "cannot complete login",
        "incorrect user name or password",
        "invalid login",
        "no permission",
        "access denied",
        "permission to perform this operation was denied",
    ]
    return any(n in msg for n in needles)


def _is_already_exists_error(e: BaseException) -> bool:
    msg = _msg(e)
    needles = [
        "already exists",
        "duplicatename",
        "duplicate name",
        "already in use",
    ]
    return any(n in msg for n in needles)


def _is_not_supported_error(e: BaseException) -> bool:
    msg = _msg(e)
    needles = [
        "not supported",
        "unsupported",
        "notsupported",
        "invalid ovf",
        "ovf descriptor",
        "failed to parse ovf",
        "unknown disk format",
    ]
    return any(n in msg for n in needles)


def _is_network_error(e: BaseException) -> bool:
    if isinstance(e, (socket.timeout, TimeoutError, ConnectionError, subprocess.TimeoutExpired)):
        return True
    if isinstance(e, OSError) and e.errno in (
        errno.ECONNREFUSED,
        errno.ETIMEDOUT,
        errno.EHOSTUNREACH,
        errno.ENETUNREACH,
        errno.ECONNRESET,
    ):
        return True
    msg = _msg(e)
    needles = [
        "timed out",
        "timeout",
        "connection refused",
        "connection reset",
        "broken pipe",
        "unexpected eof",
        "no such host",
        "name or service not known",
        "temporary failure in name resolution",
        "tls",
        "ssl",
        "handshake",
        "certificate verify failed",
        "503 service unavailable",
        "502 bad gateway",
    ]
    return any(n in msg for n in needles)


def _is_not_found_error(e: BaseException) -> bool:
    msg = _msg(e)
    needles = [
        "not found",
        "does not exist",
        "no such file",
        "no matches found",
    ]
    return any(n in msg for n in needles)


def classify(e: BaseException) -> ErrorClass:
    """
    Bucket a control-plane failure.

    Order matters: "already exists" and "not supported" are checked before
    the transport needles so a capability refusal is never retried.
    """
    if isinstance(e, ObjectExists):
        return ErrorClass.ALREADY_EXISTS
    if isinstance(e, ImportNotSupported):
        return ErrorClass.NOT_SUPPORTED
    if _is_tool_missing_error(e):
        return ErrorClass.TOOL_MISSING
    if _is_auth_error(e):
        return ErrorClass.AUTH
    if _is_already_exists_error(e):
        return ErrorClass.ALREADY_EXISTS
    if _is_not_supported_error(e):
        return ErrorClass.NOT_SUPPORTED
    if _is_network_error(e):
        return ErrorClass.TRANSIENT
    if _is_not_found_error(e):
        return ErrorClass.NOT_FOUND
    return ErrorClass.OTHER


def is_transient(e: BaseException) -> bool:
    return isinstance(e, ClusterError) and classify(e) is ErrorClass.TRANSIENT


def classify_exit_code(e: BaseException) -> VsphereExitCode:
    if isinstance(e, KeyboardInterrupt):
        return VsphereExitCode.INTERRUPTED
    if isinstance(e, SystemExit):
        return VsphereExitCode.USAGE if e.code == 2 else VsphereExitCode.FAILED

    if isinstance(e, ConnectivityError):
        return VsphereExitCode(e.code) if e.code in (ExitCode.AUTH, ExitCode.CONNECTIVITY) else VsphereExitCode.NETWORK
    if isinstance(e, PreconditionError):
        return VsphereExitCode.PRECONDITION
    if isinstance(e, Fatal):
        try:
            return VsphereExitCode(e.code)
        except ValueError:
            return VsphereExitCode.FAILED

    if isinstance(e, (ClusterError, ConversionError, OSError)):
        cls = classify(e)
        if cls is ErrorClass.TOOL_MISSING:
            return VsphereExitCode.TOOL_MISSING
        if cls is ErrorClass.AUTH:
            return VsphereExitCode.AUTH
        if cls is ErrorClass.TRANSIENT:
            return VsphereExitCode.NETWORK

    return VsphereExitCode.FAILED
