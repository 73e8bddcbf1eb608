# SPDX-License-Identifier: LGPL-3.0-or-later
# prestage/modes/inventory_mode.py
from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from rich.console import Console
from rich.table import Table

from ..config.templates import infer_format
from ..core.exceptions import ClusterError, ExitCode
from ..core.logger import Log
from ..core.models import ClusterTarget, ObjectKind, ObjectRef, TemplateSpec
from ..core.utils import U
from ..vmware.inventory import ClusterInventory
from ..vmware.vsphere.errors import ErrorClass, classify

IMAGE_PATTERNS = ("*.ova", "*.qcow2", "*.img", "*.raw")


@dataclass(frozen=True)
class ImageFile:
    path: Path
    format: str
    size: int
    declared_as: Optional[str]


class InventoryMode:
    """
    Read-only helper commands:
      - list-images: local images in files_dir and declared sources that are missing
      - templates:   VMs under the target folder and whether each is a template
      - test:        connectivity plus existence of every cluster target object
    """

    def __init__(
        self,
        logger: logging.Logger,
        *,
        cli: Any = None,
        target: Optional[ClusterTarget] = None,
        console: Optional[Console] = None,
    ):
        self.logger = logger
        self.cli = cli
        self.target = target
        self.console = console or Console(stderr=False)

    def _inventory(self) -> ClusterInventory:
        if self.cli is None or self.target is None:
            raise ValueError("cluster commands need a govc client and a cluster target")
        return ClusterInventory(self.cli, self.target, self.logger)

    # ------------------------------------------------------------------
    # list-images
    # ------------------------------------------------------------------

    def scan_images(self, files_dir: Path, specs: Sequence[TemplateSpec] = ()) -> List[ImageFile]:
        by_source = {s.source.resolve(): s.name for s in specs}
        found: Dict[Path, ImageFile] = {}
        if files_dir.is_dir():
            for pattern in IMAGE_PATTERNS:
                for p in sorted(files_dir.glob(pattern)):
                    if not p.is_file() or p in found:
                        continue
                    fmt = infer_format(p)
                    found[p] = ImageFile(
                        path=p,
                        format=fmt.value if fmt else "unknown",
                        size=p.stat().st_size,
                        declared_as=by_source.get(p.resolve()),
                    )
        return sorted(found.values(), key=lambda i: i.path.name)

    def list_images(self, files_dir: Path, specs: Sequence[TemplateSpec] = ()) -> int:
        files_dir = Path(files_dir).expanduser()
        if not files_dir.is_dir():
            Log.warn(self.logger, f"Files directory not found: {files_dir}")

        images = self.scan_images(files_dir, specs)
        table = Table(title=f"Images in {files_dir}")
        table.add_column("File", style="bold")
        table.add_column("Format")
        table.add_column("Size", justify="right")
        table.add_column("Template")
        for img in images:
            table.add_row(img.path.name, img.format, U.human_bytes(img.size), img.declared_as or "[dim]-[/]")
        self.console.print(table)
        if not images:
            self.console.print(f"No supported image files ({', '.join(IMAGE_PATTERNS)}) in {files_dir}")

        missing = [s for s in specs if not s.source.is_file()]
        for s in missing:
            Log.warn(self.logger, f"{s.name}: source file missing: {s.source}")
        return ExitCode.OK

    # ------------------------------------------------------------------
    # templates
    # ------------------------------------------------------------------

    def list_templates(self) -> int:
        inv = self._inventory()
        inv.check_connectivity()
        folder = inv.resolve(ObjectKind.FOLDER, self.target.folder)
        if not isinstance(folder, ObjectRef):
            Log.fail(self.logger, f"folder {self.target.folder!r} not found")
            return ExitCode.PRECONDITION

        table = Table(title=f"VMs in {folder.path}")
        table.add_column("Name", style="bold")
        table.add_column("Kind")
        n_templates = 0
        for path in sorted(self.cli.find(folder.path, ObjectKind.VM.find_type)):
            try:
                is_tpl = self.cli.vm_is_template(path)
            except ClusterError as e:
                if classify(e) is ErrorClass.NOT_FOUND:
                    continue
                raise
            n_templates += int(is_tpl)
            table.add_row(posixpath.basename(path), "[green]template[/]" if is_tpl else "[yellow]vm[/]")
        self.console.print(table)
        self.logger.info("%d template(s) in %s", n_templates, folder.path)
        return ExitCode.OK

    # ------------------------------------------------------------------
    # test
    # ------------------------------------------------------------------

    def test_connection(self) -> int:
        inv = self._inventory()
        info = inv.check_connectivity()
        Log.ok(self.logger, f"Connected: {info.get('fullName') or info.get('FullName') or 'vCenter'}")

        table = Table(title="Cluster target")
        table.add_column("Object", style="bold")
        table.add_column("Name")
        table.add_column("Path")
        table.add_column("Exists")
        table.add_row("datacenter", self.target.datacenter, self.target.dc_root, "")
        all_ok = True
        for kind, name in self.target.required_objects():
            ref = inv.resolve(kind, name)
            ok = isinstance(ref, ObjectRef)
            all_ok = all_ok and ok
            table.add_row(
                kind.value,
                name or "[dim](root)[/]",
                ref.path if isinstance(ref, ObjectRef) else "",
                "[green]yes[/]" if ok else "[bold red]no[/]",
            )
        self.console.print(table)
        return ExitCode.OK if all_ok else ExitCode.PRECONDITION
