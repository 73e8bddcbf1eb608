# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Small helpers shared by the cluster-facing code and the CLI output layer.
"""
from __future__ import annotations

import re
import sys
from typing import Optional

from rich.console import Console

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_.-]+")


def safe_name(name: Optional[str]) -> str:
    """
    Sanitize a template name for use in local filenames and datastore paths.

    Replaces non-alphanumeric characters (except _, ., -) with underscores.
    Returns "template" if the input is empty or None.

    Examples:
        >>> safe_name("ubuntu 24.04 (lts)")
        'ubuntu_24.04_lts_'
        >>> safe_name(None)
        'template'
    """
    return _UNSAFE_RE.sub("_", (name or "template").strip()) or "template"


def is_tty(stream=None) -> bool:
    """
    Check if the specified stream (or stdout by default) is a TTY.
    """
    try:
        if stream is None:
            stream = sys.stdout
        return stream.isatty()
    except Exception:
        return False


def create_console(*, force: bool = False) -> Optional[Console]:
    """
    Create a Rich Console for formatted output.

    Returns None when stdout is not a TTY unless force=True.
    """
    if not force and not is_tty():
        return None
    return Console(stderr=False)
