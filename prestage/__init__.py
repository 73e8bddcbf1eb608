# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# prestage/__init__.py
"""
prestage - stage base-OS images into a vSphere template catalog

Declared templates (name -> OVA / qcow2 / raw image) are reconciled against
the cluster: missing ones are converted, imported and marked as templates,
present ones are left alone, half-built ones are repaired.

Usage as a library:

    from prestage import Reconciler, load_templates

    report = Reconciler(cli=cli, converter=conv, options=opts, logger=log).run(specs, target)
    raise SystemExit(report.exit_code)
"""

__version__ = "0.1.0"

from .config.templates import load_target, load_templates
from .core.models import ClusterTarget, StagingResult, TemplateSpec
from .orchestrator import Orchestrator, Reconciler, Report, TemplateStager

__all__ = [
    "__version__",
    "Orchestrator",
    "Reconciler",
    "Report",
    "TemplateStager",
    "ClusterTarget",
    "StagingResult",
    "TemplateSpec",
    "load_target",
    "load_templates",
]
