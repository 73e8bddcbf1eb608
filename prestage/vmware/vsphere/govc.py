# SPDX-License-Identifier: LGPL-3.0-or-later
# prestage/vmware/vsphere/govc.py
# -*- coding: utf-8 -*-
"""govc adapter: the narrow set of control-plane calls the stager consumes"""
from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from ...core.exceptions import ClusterError, ImportNotSupported, ObjectExists
from ..transports.govc_common import GovcRunner, normalize_ds_path
from .errors import ErrorClass, classify


def _first(d: Dict[str, Any], *keys: str) -> Any:
    # govc changed JSON casing between releases (VirtualMachines vs virtualMachines).
    for k in keys:
        if k in d:
            return d[k]
    return None


def _template_flag(info: Any) -> Optional[bool]:
    if not isinstance(info, dict):
        return None
    vms = _first(info, "virtualMachines", "VirtualMachines") or []
    if not isinstance(vms, list) or not vms:
        return None
    cfg = _first(vms[0] or {}, "config", "Config") or {}
    flag = _first(cfg, "template", "Template")
    return bool(flag) if flag is not None else None


def _typed(e: ClusterError) -> ClusterError:
    """Re-raise create/import refusals as ObjectExists / ImportNotSupported."""
    cls = classify(e)
    typed = {ErrorClass.ALREADY_EXISTS: ObjectExists, ErrorClass.NOT_SUPPORTED: ImportNotSupported}.get(cls)
    if typed is None:
        return e
    return typed(code=e.code, msg=e.msg, cause=e, context=e.context, returncode=e.returncode, stderr=e.stderr)


class GovmomiCLI(GovcRunner):
    """
    Typed wrappers over govc for the staging workflow.

    Every method is a single govc invocation; no retry or decision logic here.
    Failures surface as ClusterError (see vsphere/errors.py for classification).
    """

    def __init__(self, args: Any, logger: Any):
        super().__init__(logger=logger, args=args)

    # -------- session

    def about(self) -> Dict[str, Any]:
        data = self.run_json(["about", "-json"], timeout_s=min(self.timeout_s, 120.0)) or {}
        return data if isinstance(data, dict) else {}

    # -------- read-only inventory

    def find(self, root: str, type_: str, name: Optional[str] = None) -> List[str]:
        argv = ["find", root, "-type", type_]
        if name:
            argv += ["-name", name]
        out = self.run_text(argv)
        return [ln.strip() for ln in out.splitlines() if ln.strip()]

    def vm_is_template(self, path: str) -> bool:
        info = self.run_json(["vm.info", "-json", path])
        flag = _template_flag(info)
        if flag is None:
            raise ClusterError(msg=f"vm.info: {path} not found (no config returned)")
        return flag

    # -------- archive import

    def import_ova(
        self,
        ova: Path,
        *,
        name: str,
        datastore: str,
        pool: str,
        folder: str,
        options: Dict[str, Any],
    ) -> None:
        fd, opt_path = tempfile.mkstemp(prefix="prestage-ova-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(options, f)
            try:
                self.run_text(
                    [
                        "import.ova",
                        "-ds", datastore,
                        "-pool", pool,
                        "-folder", folder,
                        "-name", name,
                        "-options", opt_path,
                        str(ova),
                    ]
                )
            except ClusterError as e:
                raise _typed(e) from e
        finally:
            Path(opt_path).unlink(missing_ok=True)

    # -------- compose path

    def create_vm(
        self,
        name: str,
        *,
        memory_mb: int,
        cpus: int,
        guest_id: str,
        network: str,
        datastore: str,
        pool: str,
        folder: str,
    ) -> None:
        try:
            self.run_text(
                [
                    "vm.create",
                    "-on=false",
                    "-m", str(memory_mb),
                    "-c", str(cpus),
                    "-g", guest_id,
                    "-net", network,
                    "-ds", datastore,
                    "-pool", pool,
                    "-folder", folder,
                    name,
                ]
            )
        except ClusterError as e:
            raise _typed(e) from e

    def add_scsi_controller(self, vm: str, controller: str) -> str:
        """Returns the new controller's device name (e.g. pvscsi-1000)."""
        out = self.run_text(["device.scsi.add", "-vm", vm, "-type", controller])
        return out.splitlines()[-1].strip() if out else ""

    def import_vmdk(self, vmdk: Path, *, datastore: str, pool: str, ds_dir: str) -> str:
        """
        Upload a stream-optimized vmdk; govc converts it to a datastore disk.

        Returns the datastore-relative disk path (<ds_dir>/<basename>.vmdk).
        """
        _, rel_dir = normalize_ds_path(datastore, ds_dir)
        rel_dir = rel_dir.rstrip("/")
        self.run_text(["import.vmdk", "-ds", datastore, "-pool", pool, "-force", str(vmdk), rel_dir])
        return f"{rel_dir}/{vmdk.name}"

    def attach_disk(self, vm: str, disk: str, *, datastore: str, controller: Optional[str] = None) -> None:
        argv = ["vm.disk.attach", "-vm", vm, "-ds", datastore, "-disk", disk]
        if controller:
            argv += ["-controller", controller]
        self.run_text(argv)

    # -------- lifecycle

    def mark_template(self, vm: str) -> None:
        self.run_text(["vm.markastemplate", vm])

    def mark_vm(self, vm: str, *, pool: str) -> None:
        self.run_text(["vm.markasvm", "-pool", pool, vm])

    def power_off(self, vm: str) -> None:
        self.run_text(["vm.power", "-off", "-force", vm])

    def destroy_vm(self, vm: str) -> None:
        self.run_text(["vm.destroy", vm])

    def datastore_rm(self, datastore: str, path: str) -> None:
        ds, rel = normalize_ds_path(datastore, path)
        self.run_text(["datastore.rm", "-ds", ds, "-f", rel])
