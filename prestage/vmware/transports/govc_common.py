# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# prestage/vmware/transports/govc_common.py
"""
govc execution primitives.

Every control-plane call goes through GovcRunner: it seeds the GOVC_*
environment, bounds each call with a timeout, reaps the child on Ctrl+C and
turns a non-zero exit (or govc's usage text) into a ClusterError carrying
the return code and stderr for classification.
"""

from __future__ import annotations

import json
import os
import re
import subprocess
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from ...core.exceptions import ClusterError
from ...core.utils import U

DEFAULT_TIMEOUT_S = 3600.0

# "[ds] dir/file" as printed by vm.info / device.info
_DS_BACKING_RE = re.compile(r"^\[(?P<ds>[^\]]+)\]\s*(?P<path>.+)$")

# govc prints its top-level help on a malformed command line, sometimes with rc=0
_USAGE_RE = re.compile(
    r"^Usage:\s*govc\s*<COMMAND>|The available commands are listed below|govmomi is a Go library for interacting",
    re.IGNORECASE | re.MULTILINE,
)

# GOVC_* variable -> namespace attribute
_SEEDED = (
    ("GOVC_USERNAME", "vc_user"),
    ("GOVC_DATACENTER", "datacenter"),
)


def normalize_ds_path(datastore: str, ds_path: str) -> Tuple[str, str]:
    """
    Split a datastore path into (datastore, relative path).

    "[ds2] deb12/deb12.vmdk" -> ("ds2", "deb12/deb12.vmdk")
    "/deb12"                 -> (datastore, "deb12")
    """
    s = (ds_path or "").strip()
    if not s:
        raise ClusterError(msg="empty datastore path")
    m = _DS_BACKING_RE.match(s)
    if m:
        return m.group("ds").strip() or datastore, m.group("path").strip().lstrip("/")
    return datastore, s.lstrip("/")


def mask_secret(v: Optional[str]) -> str:
    if not v:
        return "<unset>"
    return "***" if len(v) <= 4 else f"{v[:2]}***{v[-2:]}"


def _govc_url(host: str) -> str:
    return host if "://" in host else f"https://{host}/sdk"


class GovcRunner:
    """
    Runs govc with a seeded environment.

    Seeding is additive: a GOVC_* variable already exported by the user is
    never overridden.
    """

    def __init__(self, *, logger: Any, args: Any):
        self.logger = logger
        self.args = args
        self.govc_bin = getattr(args, "govc_bin", None) or os.environ.get("GOVC_BIN", "govc")
        self.timeout_s = float(getattr(args, "govc_timeout_s", None) or DEFAULT_TIMEOUT_S)

    def available(self) -> bool:
        try:
            p = subprocess.run([self.govc_bin, "version"], capture_output=True, text=True, check=False, timeout=30)
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.debug("govc.available: %s: %r", self.govc_bin, e)
            return False
        self.logger.debug("govc.available: %s rc=%s %s", self.govc_bin, p.returncode, (p.stdout or "").strip())
        return p.returncode == 0

    # -------- environment

    def _password(self, env: Mapping[str, str]) -> Optional[str]:
        pw = getattr(self.args, "vc_password", None)
        if not pw:
            name = getattr(self.args, "vc_password_env", None)
            pw = env.get(str(name)) if name else None
        return (pw or "").strip() or None

    def env(self) -> Dict[str, str]:
        # An exported-but-empty variable counts as unset.
        env = {k: v for k, v in os.environ.items() if v or not k.startswith("GOVC_")}

        host = getattr(self.args, "vcenter", None)
        if host:
            env.setdefault("GOVC_URL", _govc_url(str(host)))
        for var, attr in _SEEDED:
            v = getattr(self.args, attr, None)
            if v:
                env.setdefault(var, str(v))
        pw = self._password(env)
        if pw:
            env.setdefault("GOVC_PASSWORD", pw)
        if getattr(self.args, "vc_insecure", False):
            env.setdefault("GOVC_INSECURE", "1")

        return env

    def describe_env(self) -> str:
        env = self.env()
        shown = {
            "GOVC_URL": env.get("GOVC_URL", "<unset>"),
            "GOVC_USERNAME": env.get("GOVC_USERNAME", "<unset>"),
            "GOVC_PASSWORD": mask_secret(env.get("GOVC_PASSWORD")),
            "GOVC_INSECURE": env.get("GOVC_INSECURE", "<unset>"),
            "GOVC_DATACENTER": env.get("GOVC_DATACENTER", "<unset>"),
        }
        return " ".join(f"{k}={v}" for k, v in shown.items())

    # -------- execution

    def _spawn(self, argv: Sequence[str]) -> subprocess.Popen:
        try:
            return subprocess.Popen(argv, stdout=subprocess.PIPE, stderr=subprocess.PIPE, env=self.env(), text=True)
        except FileNotFoundError as e:
            raise ClusterError(msg=f"executable file not found: {self.govc_bin}", cause=e) from e
        except OSError as e:
            raise ClusterError(msg=f"cannot execute {self.govc_bin}: {e}", cause=e) from e

    def _stop(self, proc: subprocess.Popen, what: str) -> None:
        self.logger.warning("Interrupted; terminating govc %s", what)
        proc.terminate()
        try:
            proc.wait(timeout=10)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()

    def run_text(self, cmd: Sequence[str], *, timeout_s: Optional[float] = None) -> str:
        argv = [self.govc_bin, *map(str, cmd)]
        pretty = U.pretty_cmd(argv)
        what = str(cmd[0]) if cmd else ""
        timeout = float(self.timeout_s if timeout_s is None else timeout_s)
        self.logger.debug("govc.exec: %s", pretty)

        proc = self._spawn(argv)
        try:
            out, err = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            proc.kill()
            proc.communicate()
            raise ClusterError(
                msg=f"govc timed out after {timeout:.0f}s: {what}",
                cause=e,
                stderr="timeout",
                context={"cmd": pretty},
            ) from e
        except KeyboardInterrupt:
            self._stop(proc, what)
            raise

        out, err = (out or "").strip(), (err or "").strip()
        self.logger.debug("govc.exec: rc=%s out=%dB err=%s", proc.returncode, len(out), U.tail_lines(err, 5) or "-")

        if _USAGE_RE.search(out) or _USAGE_RE.search(err):
            raise ClusterError(
                msg=f"govc printed usage/help output instead of running {what} (bad arguments?): {pretty}",
                returncode=proc.returncode,
                stderr=err,
            )
        if proc.returncode != 0:
            raise ClusterError(
                msg=f"govc failed ({proc.returncode}): {err or out[:1200]}",
                returncode=proc.returncode,
                stderr=err,
                context={"cmd": pretty},
            )
        return out

    def run_json(self, cmd: Sequence[str], *, timeout_s: Optional[float] = None) -> Any:
        out = self.run_text(cmd, timeout_s=timeout_s)
        if not out:
            return None
        try:
            return json.loads(out)
        except ValueError as e:
            raise ClusterError(msg=f"govc returned non-JSON output: {e}: {out[:2000]}", cause=e) from e
