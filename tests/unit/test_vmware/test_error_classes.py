# SPDX-License-Identifier: LGPL-3.0-or-later
"""Classification of govc failures and mapping to process exit codes."""
from __future__ import annotations

import errno
import subprocess

import pytest

from prestage.core.exceptions import (
    ClusterError,
    ConnectivityError,
    ConversionError,
    ExitCode,
    Fatal,
    ImportNotSupported,
    ObjectExists,
    PreconditionError,
)
from prestage.vmware.vsphere.errors import (
    ErrorClass,
    VsphereExitCode,
    classify,
    classify_exit_code,
    is_transient,
)


def govc_error(stderr: str) -> ClusterError:
    return ClusterError(msg=f"govc failed (1): {stderr}", returncode=1, stderr=stderr)


@pytest.mark.unit
class TestClassify:
    @pytest.mark.parametrize(
        "stderr, expected",
        [
            ("ServerFaultCode: Cannot complete login due to an incorrect user name or password.", ErrorClass.AUTH),
            ("ServerFaultCode: Permission to perform this operation was denied.", ErrorClass.AUTH),
            ("ServerFaultCode: The name 'debian-12-packer' already exists.", ErrorClass.ALREADY_EXISTS),
            ("DuplicateName", ErrorClass.ALREADY_EXISTS),
            ("Failed to parse OVF descriptor", ErrorClass.NOT_SUPPORTED),
            ("ServerFaultCode: The operation is not supported on the object.", ErrorClass.NOT_SUPPORTED),
            ("Post https://vc/sdk: dial tcp 10.0.0.5:443: connect: connection refused", ErrorClass.TRANSIENT),
            ("net/http: TLS handshake timeout", ErrorClass.TRANSIENT),
            ("read: connection reset by peer", ErrorClass.TRANSIENT),
            ("vm 'debian-12-packer' not found", ErrorClass.NOT_FOUND),
            ("File [ds1] debian-12-packer was not found", ErrorClass.NOT_FOUND),
            ("something odd happened", ErrorClass.OTHER),
        ],
    )
    def test_stderr_needles(self, stderr, expected):
        assert classify(govc_error(stderr)) is expected

    def test_typed_errors_win_over_needles(self):
        # "timeout" would otherwise read as transient
        assert classify(ObjectExists(msg="timeout while creating")) is ErrorClass.ALREADY_EXISTS
        assert classify(ImportNotSupported(msg="connection reset")) is ErrorClass.NOT_SUPPORTED

    def test_missing_binary(self):
        assert classify(FileNotFoundError(errno.ENOENT, "govc")) is ErrorClass.TOOL_MISSING
        assert classify(ClusterError(msg="executable file not found: govc")) is ErrorClass.TOOL_MISSING

    def test_os_level_network_errors(self):
        assert classify(OSError(errno.EHOSTUNREACH, "no route")) is ErrorClass.TRANSIENT
        assert classify(subprocess.TimeoutExpired(cmd="govc", timeout=1)) is ErrorClass.TRANSIENT

    def test_is_transient_needs_cluster_error(self):
        assert is_transient(govc_error("connection refused"))
        assert not is_transient(ConnectionError("connection refused"))
        assert not is_transient(govc_error("The name 'x' already exists. (connection reset)"))


@pytest.mark.unit
class TestClassifyExitCode:
    def test_fatal_codes_pass_through(self):
        assert classify_exit_code(Fatal(code=ExitCode.USAGE, msg="bad flag")) is VsphereExitCode.USAGE
        assert classify_exit_code(Fatal(code=ExitCode.TOOL_MISSING, msg="no govc")) is VsphereExitCode.TOOL_MISSING

    def test_unknown_fatal_code_is_failed(self):
        assert classify_exit_code(Fatal(code=77, msg="x")) is VsphereExitCode.FAILED

    def test_connectivity_and_precondition(self):
        assert classify_exit_code(ConnectivityError(msg="down")) == ExitCode.CONNECTIVITY
        assert classify_exit_code(ConnectivityError(code=ExitCode.AUTH, msg="bad login")) == ExitCode.AUTH
        assert classify_exit_code(PreconditionError(msg="no network")) == ExitCode.PRECONDITION

    def test_raw_errors(self):
        assert classify_exit_code(KeyboardInterrupt()) == ExitCode.INTERRUPTED
        assert classify_exit_code(govc_error("incorrect user name or password")) == ExitCode.AUTH
        assert classify_exit_code(FileNotFoundError(errno.ENOENT, "qemu-img")) == ExitCode.TOOL_MISSING
        assert classify_exit_code(ConversionError(msg="qemu-img convert failed")) == ExitCode.FAILED
        assert classify_exit_code(RuntimeError("bug")) == ExitCode.FAILED
