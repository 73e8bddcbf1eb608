# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# prestage/orchestrator/orchestrator.py

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Tuple

from ..config.templates import load_target, load_templates
from ..converters.qemu_converter import ImageConverter
from ..core.exceptions import ExitCode, Fatal
from ..core.logger import Log
from ..core.models import ClusterTarget, TemplateSpec
from ..core.utils import U
from ..modes.inventory_mode import InventoryMode
from ..vmware.vmware_utils import create_console, is_tty
from ..vmware.vsphere.govc import GovmomiCLI
from .reconciler import Reconciler
from .report import log_report, render_table, write_json
from .stager import ImportStrategy, RepairPolicy, StagerOptions


class Orchestrator:
    """
    Top-level command dispatcher. run() returns the process exit code;
    run-level failures (usage, connectivity, precondition) raise Fatal.
    """

    def __init__(self, logger: logging.Logger, args: argparse.Namespace, *, cli: Any = None):
        self.logger = logger
        self.args = args
        self._cli = cli

        Log.trace(
            self.logger,
            "Orchestrator init: cmd=%r workdir=%r",
            getattr(args, "cmd", None),
            getattr(args, "workdir", None),
        )

    # ------------------------------------------------------------------
    # Building blocks
    # ------------------------------------------------------------------

    @property
    def workdir(self) -> Path:
        return Path(getattr(self.args, "workdir", None) or "./converted").expanduser()

    def cli(self) -> Any:
        if self._cli is None:
            cli = GovmomiCLI(self.args, self.logger)
            if not cli.available():
                raise Fatal(ExitCode.TOOL_MISSING, f"govc not found ({cli.govc_bin}); install govmomi's govc or set --govc-bin")
            self.logger.debug("govc env: %s", cli.describe_env())
            self._cli = cli
        return self._cli

    def specs(self) -> Tuple[TemplateSpec, ...]:
        specs = load_templates(getattr(self.args, "templates", None), files_dir=getattr(self.args, "files_dir", None))
        only = [n for n in (getattr(self.args, "only", None) or []) if n]
        if not only:
            return specs
        known = {s.name for s in specs}
        unknown = sorted(set(only) - known)
        if unknown:
            raise Fatal(ExitCode.USAGE, f"--only names not declared: {', '.join(unknown)} (declared: {', '.join(sorted(known))})")
        return tuple(s for s in specs if s.name in only)

    def target(self) -> ClusterTarget:
        return load_target(vars(self.args))

    def options(self) -> StagerOptions:
        a = self.args
        return StagerOptions(
            import_strategy=ImportStrategy(str(getattr(a, "import_strategy", None) or "auto")),
            repair_policy=RepairPolicy(str(getattr(a, "repair_policy", None) or "restage")),
            force=bool(getattr(a, "force", False)),
            dry_run=bool(getattr(a, "dry_run", False)) or getattr(a, "cmd", None) == "plan",
            retries=int(getattr(a, "retries", 3) or 3),
            keep_artifacts=bool(getattr(a, "keep_artifacts", False)),
        )

    def converter(self, *, show_progress: bool) -> ImageConverter:
        return ImageConverter(
            self.logger,
            self.workdir,
            show_progress=show_progress,
            max_parallel=int(getattr(self.args, "convert_workers", 1) or 1),
            qemu_img=getattr(self.args, "qemu_img", None) or "qemu-img",
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def run(self) -> int:
        cmd = getattr(self.args, "cmd", None) or "stage"
        handlers = {
            "stage": self._cmd_stage,
            "plan": self._cmd_stage,
            "list-images": self._cmd_list_images,
            "templates": self._cmd_templates,
            "test": self._cmd_test,
            "clean": self._cmd_clean,
        }
        fn = handlers.get(cmd)
        if fn is None:
            raise Fatal(ExitCode.USAGE, f"Unknown cmd={cmd!r}")
        return fn()

    def _cmd_stage(self) -> int:
        specs = self.specs()
        target = self.target()
        options = self.options()
        workers = max(1, int(getattr(self.args, "workers", 1) or 1))

        Log.banner(self.logger, "prestage: plan" if options.dry_run else "prestage: stage")
        self.logger.info(
            "%d template(s) -> [%s] %s (strategy=%s, repair=%s%s)",
            len(specs),
            target.datastore,
            target.folder or f"{target.dc_root}/vm",
            options.import_strategy.value,
            options.repair_policy.value,
            ", force" if options.force else "",
        )

        show_progress = workers == 1 and is_tty(sys.stderr) and not getattr(self.args, "json_logs", False)
        reconciler = Reconciler(
            cli=self.cli(),
            converter=self.converter(show_progress=show_progress),
            options=options,
            logger=self.logger,
            workers=workers,
        )
        report = reconciler.run(specs, target)

        log_report(self.logger, report)
        console = create_console()
        if console is not None:
            render_table(report, console)

        report_path = getattr(self.args, "report", None)
        if report_path:
            written = write_json(report, Path(report_path))
            self.logger.info("Report written: %s", written)

        return report.exit_code

    def _cmd_list_images(self) -> int:
        files_dir = Path(getattr(self.args, "files_dir", None) or "./files").expanduser()
        return InventoryMode(self.logger).list_images(files_dir, self.specs())

    def _cmd_templates(self) -> int:
        return InventoryMode(self.logger, cli=self.cli(), target=self.target()).list_templates()

    def _cmd_test(self) -> int:
        return InventoryMode(self.logger, cli=self.cli(), target=self.target()).test_connection()

    def _cmd_clean(self) -> int:
        wd = self.workdir
        Log.step(self.logger, f"Cleaning work directory {wd}")
        U.safe_rmtree(wd, self.logger)
        if wd.exists():
            raise Fatal(ExitCode.FAILED, f"could not remove {wd}")
        U.ensure_dir(wd)
        Log.ok(self.logger, f"Work directory reset: {wd}")
        return ExitCode.OK
