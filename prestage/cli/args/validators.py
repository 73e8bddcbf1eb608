# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# prestage/cli/args/validators.py
from __future__ import annotations

import argparse
import os
from typing import Any, Callable, Dict

from ...core.exceptions import ExitCode, Fatal
from .groups import COMMANDS
from .helpers import connection_value, merged, merged_cmd, present, resolve_password

Validator = Callable[[argparse.Namespace, Dict[str, Any]], None]


def _usage(msg: str) -> Fatal:
    return Fatal(code=ExitCode.USAGE, msg=msg)


def _validate_connection(args: argparse.Namespace, conf: Dict[str, Any]) -> None:
    """govc needs a URL, a user and a password, from CLI/YAML or GOVC_* in the environment."""
    cmd = merged_cmd(args, conf)
    if connection_value(args, conf, "vcenter", "GOVC_URL") is None:
        raise _usage(f"cmd={cmd}: requires `vcenter:` (or GOVC_URL in the environment).")
    if connection_value(args, conf, "vc_user", "GOVC_USERNAME") is None:
        raise _usage(f"cmd={cmd}: requires `vc_user:` (or GOVC_USERNAME).")

    env_name = merged(args, conf, "vc_password_env")
    if present(env_name) and not present(merged(args, conf, "vc_password")) and str(env_name) not in os.environ:
        raise _usage(f"cmd={cmd}: vc_password_env={env_name!r} is not set in the environment.")
    if not present(resolve_password(args, conf)):
        raise _usage(f"cmd={cmd}: requires `vc_password:`/`vc_password_env:` (or GOVC_PASSWORD).")


def _validate_staging_knobs(args: argparse.Namespace, conf: Dict[str, Any]) -> None:
    for key in ("retries", "workers", "convert_workers"):
        v = merged(args, conf, key)
        try:
            n = int(v)
        except (TypeError, ValueError):
            raise _usage(f"{key} must be an integer, got {v!r}")
        if n < 1:
            raise _usage(f"{key} must be >= 1, got {n}")

    t = merged(args, conf, "govc_timeout_s")
    try:
        ok = float(t) > 0
    except (TypeError, ValueError):
        ok = False
    if not ok:
        raise _usage(f"govc_timeout_s must be a positive number, got {t!r}")


def _validate_stage(args: argparse.Namespace, conf: Dict[str, Any]) -> None:
    _validate_connection(args, conf)
    _validate_staging_knobs(args, conf)


def _no_checks(args: argparse.Namespace, conf: Dict[str, Any]) -> None:
    return None


_VALIDATORS: Dict[str, Validator] = {
    "stage": _validate_stage,
    "plan": _validate_stage,
    "templates": _validate_connection,
    "test": _validate_connection,
    "list-images": _no_checks,
    "clean": _no_checks,
}


def validate_args(args: argparse.Namespace, conf: Dict[str, Any]) -> None:
    """
    YAML drives the operation (`cmd:`), CLI can override; default is stage.
    Raises Fatal(code=2) on the first problem found.
    """
    cmd = merged_cmd(args, conf)
    if cmd not in COMMANDS:
        raise _usage(f"Unknown cmd={cmd!r}. Supported: {', '.join(COMMANDS)}.")
    _VALIDATORS[cmd](args, conf)
