# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# prestage/orchestrator/report.py
"""
Run summary: counts, per-template outcomes, and the JSON report file.

An unattended run must be auditable from its exit code plus this report.
"""

from __future__ import annotations

import datetime as _dt
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

from rich.console import Console
from rich.table import Table

from .. import __version__
from ..core.exceptions import ExitCode
from ..core.logger import Log
from ..core.models import Outcome, StagingResult
from ..core.utils import U

_OUTCOME_STYLE = {
    Outcome.STAGED: "green",
    Outcome.ALREADY_PRESENT: "cyan",
    Outcome.FAILED: "bold red",
}


@dataclass(frozen=True)
class Report:
    staged: int
    skipped: int
    failed: Tuple[Tuple[str, str, str], ...]
    results: Tuple[StagingResult, ...]

    @classmethod
    def from_results(cls, results: Iterable[StagingResult]) -> "Report":
        ordered = tuple(sorted(results, key=lambda r: r.name))
        return cls(
            staged=sum(1 for r in ordered if r.outcome is Outcome.STAGED),
            skipped=sum(1 for r in ordered if r.outcome is Outcome.ALREADY_PRESENT),
            failed=tuple(
                (r.name, r.reason.value if r.reason else "unknown", r.message)
                for r in ordered
                if r.outcome is Outcome.FAILED
            ),
            results=ordered,
        )

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def exit_code(self) -> int:
        return ExitCode.OK if self.ok else ExitCode.FAILED

    def summary(self) -> Dict[str, Any]:
        return {
            "staged": self.staged,
            "skipped": self.skipped,
            "failed": [{"name": n, "reason": r} for n, r, _ in self.failed],
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool": "prestage",
            "version": __version__,
            "generated_at": _dt.datetime.now(_dt.timezone.utc).isoformat(timespec="seconds"),
            "ok": self.ok,
            "staged": self.staged,
            "skipped": self.skipped,
            "failed": [{"name": n, "reason": r, "message": m} for n, r, m in self.failed],
            "results": [r.to_dict() for r in self.results],
        }


def log_report(logger: logging.Logger, report: Report) -> None:
    Log.banner(logger, "Summary")
    for r in report.results:
        if r.outcome is Outcome.FAILED:
            Log.fail(logger, f"{r.name}: failed ({r.reason.value if r.reason else 'unknown'}) {r.message}")
        elif r.outcome is Outcome.STAGED:
            Log.ok(logger, f"{r.name}: staged{f' ({r.detail})' if r.detail else ''}")
        else:
            logger.info("%s: already present", r.name)
    logger.info(
        "staged=%d skipped=%d failed=%d",
        report.staged,
        report.skipped,
        len(report.failed),
    )


def render_table(report: Report, console: Optional[Console] = None) -> None:
    console = console or Console(stderr=False)
    table = Table(title="Template staging", show_lines=False)
    table.add_column("Template", style="bold")
    table.add_column("Outcome")
    table.add_column("Reason")
    table.add_column("Detail / message", overflow="fold")
    table.add_column("Time", justify="right")

    for r in report.results:
        style = _OUTCOME_STYLE.get(r.outcome, "")
        table.add_row(
            r.name,
            f"[{style}]{r.outcome.value}[/]" if style else r.outcome.value,
            r.reason.value if r.reason else "",
            r.message or r.detail,
            f"{r.duration_s:.1f}s",
        )

    console.print(table)
    console.print(
        f"staged: [green]{report.staged}[/]  skipped: [cyan]{report.skipped}[/]  "
        f"failed: [{'bold red' if report.failed else 'green'}]{len(report.failed)}[/]"
    )


def write_json(report: Report, path: Path) -> Path:
    """Write the report atomically (temp file + os.replace)."""
    path = Path(path).expanduser()
    U.ensure_dir(path.parent)
    tmp = path.with_name(path.name + ".tmp")
    try:
        with open(tmp, "w", encoding="utf-8", newline="\n") as f:
            f.write(U.json_dump(report.to_dict()))
            f.write("\n")
        os.replace(tmp, path)
    finally:
        U.safe_unlink(tmp)
    return path
