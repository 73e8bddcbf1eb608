# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Value types shared by the converter, the inventory and the stager.

Everything here is immutable: a TemplateSpec is loaded once per run, a
StagingResult is produced once per attempt and never touched again.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .exceptions import FailureReason


class SourceFormat(str, Enum):
    OVA = "ova"
    QCOW2 = "qcow2"
    RAW = "raw"

    @property
    def qemu_format(self) -> str:
        # qemu-img -f value; OVA disks are vmdk once extracted.
        return "vmdk" if self is SourceFormat.OVA else self.value


class DiskController(str, Enum):
    PVSCSI = "pvscsi"
    LSILOGIC = "lsilogic"
    LSILOGIC_SAS = "lsilogic-sas"
    BUSLOGIC = "buslogic"


class ObjectKind(str, Enum):
    NETWORK = "network"
    RESOURCE_POOL = "resource_pool"
    DATASTORE = "datastore"
    FOLDER = "folder"
    VM = "vm"

    @property
    def find_type(self) -> str:
        return _FIND_TYPES[self]


_FIND_TYPES = {
    ObjectKind.NETWORK: "n",
    ObjectKind.RESOURCE_POOL: "p",
    ObjectKind.DATASTORE: "s",
    ObjectKind.FOLDER: "f",
    ObjectKind.VM: "m",
}


@dataclass(frozen=True)
class TemplateSpec:
    name: str
    source: Path
    format: SourceFormat
    guest_id: Optional[str] = None
    memory_mb: int = 2048
    cpus: int = 2
    disk_controller: DiskController = DiskController.PVSCSI

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "source": str(self.source),
            "format": self.format.value,
            "guest_id": self.guest_id,
            "memory_mb": self.memory_mb,
            "cpus": self.cpus,
            "disk_controller": self.disk_controller.value,
        }


@dataclass(frozen=True)
class ClusterTarget:
    """Where staged objects are created. Validated once per run."""

    datacenter: str
    cluster: str
    datastore: str
    resource_pool: str
    network: str
    folder: str

    @property
    def dc_root(self) -> str:
        return "/" + self.datacenter.strip("/")

    def required_objects(self) -> Tuple[Tuple[ObjectKind, str], ...]:
        return (
            (ObjectKind.NETWORK, self.network),
            (ObjectKind.RESOURCE_POOL, self.resource_pool),
            (ObjectKind.DATASTORE, self.datastore),
            (ObjectKind.FOLDER, self.folder),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "datacenter": self.datacenter,
            "cluster": self.cluster,
            "datastore": self.datastore,
            "resource_pool": self.resource_pool,
            "network": self.network,
            "folder": self.folder,
        }


@dataclass(frozen=True)
class ObjectRef:
    """Handle to a cluster object: its kind, leaf name and full inventory path."""

    kind: ObjectKind
    name: str
    path: str


class _NotFound:
    _instance: Optional["_NotFound"] = None

    def __new__(cls) -> "_NotFound":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = _NotFound()


class VmKind(str, Enum):
    ABSENT = "absent"
    VM = "vm"
    TEMPLATE = "template"


@dataclass(frozen=True)
class VmState:
    kind: VmKind
    paths: Tuple[str, ...] = ()

    @property
    def duplicate(self) -> bool:
        return len(self.paths) > 1

    @property
    def path(self) -> Optional[str]:
        return self.paths[0] if self.paths else None


VM_ABSENT = VmState(VmKind.ABSENT)


class Outcome(str, Enum):
    ALREADY_PRESENT = "already_present"
    STAGED = "staged"
    FAILED = "failed"


@dataclass(frozen=True)
class StagingResult:
    name: str
    outcome: Outcome
    reason: Optional[FailureReason] = None
    message: str = ""
    detail: str = ""
    duration_s: float = 0.0

    @classmethod
    def already_present(cls, name: str, detail: str = "", duration_s: float = 0.0) -> "StagingResult":
        return cls(name, Outcome.ALREADY_PRESENT, detail=detail, duration_s=duration_s)

    @classmethod
    def staged(cls, name: str, detail: str = "", duration_s: float = 0.0) -> "StagingResult":
        return cls(name, Outcome.STAGED, detail=detail, duration_s=duration_s)

    @classmethod
    def failed(cls, name: str, reason: FailureReason, message: str, duration_s: float = 0.0) -> "StagingResult":
        return cls(name, Outcome.FAILED, reason=reason, message=message, duration_s=duration_s)

    @property
    def ok(self) -> bool:
        return self.outcome is not Outcome.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "outcome": self.outcome.value,
            "reason": self.reason.value if self.reason else None,
            "message": self.message,
            "detail": self.detail,
            "duration_s": round(self.duration_s, 3),
        }


@dataclass(frozen=True)
class ConvertedArtifact:
    """
    Local disk image in the cluster-compatible format.

    Owned by the staging attempt that produced it. `template` is a
    back-reference by name only.
    """

    path: Path
    template: str
    size: int = 0
    reused: bool = False


@dataclass(frozen=True)
class Placement:
    """Resolved inventory paths of a validated ClusterTarget, as govc expects them."""

    datastore: str
    pool: str
    folder: str
    network: str

    @classmethod
    def from_refs(cls, refs: Tuple[ObjectRef, ...]) -> "Placement":
        by_kind = {r.kind: r for r in refs}
        return cls(
            datastore=by_kind[ObjectKind.DATASTORE].name,
            pool=by_kind[ObjectKind.RESOURCE_POOL].path,
            folder=by_kind[ObjectKind.FOLDER].path,
            network=by_kind[ObjectKind.NETWORK].name,
        )
