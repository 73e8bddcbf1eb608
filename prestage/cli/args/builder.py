# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# prestage/cli/args/builder.py
from __future__ import annotations

import argparse

from ...core.logger import c
from ..help_texts import EXIT_CODES, FEATURE_SUMMARY, YAML_EXAMPLE

EPILOG_SECTIONS = (
    ("YAML example", YAML_EXAMPLE),
    ("Behaviour", FEATURE_SUMMARY),
    ("Exit codes", EXIT_CODES),
)


class HelpFormatter(argparse.RawDescriptionHelpFormatter, argparse.ArgumentDefaultsHelpFormatter):
    """Keeps the epilog's layout and shows defaults next to each flag."""


def build_epilog(*, color: bool = True) -> str:
    return "\n".join(
        c(f"{title}:\n", "cyan", ["bold"], enable=color) + c(body, "cyan", enable=color) for title, body in EPILOG_SECTIONS
    )
