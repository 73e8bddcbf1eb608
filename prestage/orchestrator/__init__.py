# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# prestage/orchestrator/__init__.py
"""
Orchestrator package: per-template state machine, batch driver, run report
and the top-level command dispatcher.
"""

from .orchestrator import Orchestrator
from .reconciler import Reconciler
from .report import Report
from .stager import ImportStrategy, RepairPolicy, StagerOptions, StageState, TemplateStager

__all__ = [
    "Orchestrator",
    "Reconciler",
    "Report",
    "TemplateStager",
    "StagerOptions",
    "StageState",
    "ImportStrategy",
    "RepairPolicy",
]
