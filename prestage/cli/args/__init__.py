# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# prestage/cli/args/__init__.py
"""Two-phase argument parsing: config files first, then CLI flags on top."""
from __future__ import annotations

from .builder import HelpFormatter, build_epilog
from .groups import COMMANDS
from .helpers import merged, merged_cmd, present, resolve_password
from .parser import build_parser, parse_args_with_config
from .validators import validate_args

__all__ = [
    "COMMANDS",
    "HelpFormatter",
    "build_epilog",
    "build_parser",
    "merged",
    "merged_cmd",
    "parse_args_with_config",
    "present",
    "resolve_password",
    "validate_args",
]
