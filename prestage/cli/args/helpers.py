# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# prestage/cli/args/helpers.py
"""Lookups over the parsed namespace with the merged config as fallback."""
from __future__ import annotations

import argparse
import os
from typing import Any, Dict, Mapping, Optional


def present(v: Any) -> bool:
    """None and blank strings count as unset."""
    return v is not None and not (isinstance(v, str) and not v.strip())


def merged(args: argparse.Namespace, conf: Dict[str, Any], key: str) -> Any:
    v = getattr(args, key, None)
    return v if present(v) else conf.get(key)


def connection_value(
    args: argparse.Namespace,
    conf: Dict[str, Any],
    key: str,
    govc_var: str,
    env: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """CLI/YAML value for a connection key, else the GOVC_* variable already exported."""
    env = os.environ if env is None else env
    v = merged(args, conf, key)
    if present(v):
        return str(v)
    return env.get(govc_var) if present(env.get(govc_var)) else None


def resolve_password(
    args: argparse.Namespace, conf: Dict[str, Any], env: Optional[Mapping[str, str]] = None
) -> Optional[str]:
    """vc_password, then the variable named by vc_password_env, then GOVC_PASSWORD."""
    env = os.environ if env is None else env
    direct = merged(args, conf, "vc_password")
    if present(direct):
        return str(direct)
    name = merged(args, conf, "vc_password_env")
    if present(name):
        return env.get(str(name))
    return env.get("GOVC_PASSWORD") if present(env.get("GOVC_PASSWORD")) else None


def merged_cmd(args: argparse.Namespace, conf: Dict[str, Any]) -> str:
    for v in (getattr(args, "cmd", None), conf.get("cmd")):
        if present(v):
            return str(v).strip().lower()
    return "stage"
