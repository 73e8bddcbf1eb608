# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Read-only cluster inventory queries.

Lookups are name-based inside the datacenter (and cluster, for resource
pools). A missing object is a normal answer (NOT_FOUND / VM_ABSENT), never
an exception; only an unreachable or unauthenticated control plane raises.
"""
from __future__ import annotations

import logging
import posixpath
import time
from typing import Any, Callable, Dict, List, Tuple, Union

from ..core.exceptions import (
    ClusterError,
    ConnectivityError,
    ExitCode,
    PreconditionError,
)
from ..core.models import (
    NOT_FOUND,
    VM_ABSENT,
    ClusterTarget,
    ObjectKind,
    ObjectRef,
    VmKind,
    VmState,
    _NotFound,
)
from ..core.logger import Log
from ..core.retry import retry_operation
from .vsphere.errors import ErrorClass, classify, is_transient


class ClusterInventory:
    def __init__(
        self,
        cli: Any,
        target: ClusterTarget,
        logger: logging.Logger,
        *,
        retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cli = cli
        self.target = target
        self.logger = logger
        self.retries = retries
        self._sleep = sleep

    def _read(self, op: Callable[[], Any], name: str) -> Any:
        # Read-only calls are safe to repeat on transient faults.
        return retry_operation(
            op,
            max_attempts=self.retries,
            base_backoff_s=1.0,
            max_backoff_s=10.0,
            jitter_s=0.5,
            should_retry=is_transient,
            operation_name=name,
            logger=self.logger,
            sleep=self._sleep,
        )

    # -------- scoping

    def search_root(self, kind: ObjectKind) -> str:
        dc = self.target.dc_root
        if kind is ObjectKind.NETWORK:
            return f"{dc}/network"
        if kind is ObjectKind.RESOURCE_POOL:
            return f"{dc}/host/{self.target.cluster}" if self.target.cluster else f"{dc}/host"
        if kind is ObjectKind.DATASTORE:
            return f"{dc}/datastore"
        return f"{dc}/vm"

    def _find(self, root: str, kind: ObjectKind, name: str) -> List[str]:
        try:
            return self._read(lambda: self.cli.find(root, kind.find_type, name), f"find {kind.value}")
        except ClusterError as e:
            cls = classify(e)
            if cls is ErrorClass.NOT_FOUND:
                # govc reports a missing search root as an error; for lookups that is "nothing here"
                return []
            if cls is ErrorClass.AUTH:
                raise ConnectivityError(code=ExitCode.AUTH, msg=f"vCenter rejected credentials: {e}", cause=e) from e
            if cls in (ErrorClass.TRANSIENT, ErrorClass.TOOL_MISSING):
                raise ConnectivityError(msg=f"vCenter unreachable: {e}", cause=e) from e
            raise

    # -------- contract

    def resolve(self, kind: ObjectKind, name: str) -> Union[ObjectRef, _NotFound]:
        """Handle for the object named `name`, or NOT_FOUND."""
        if kind is ObjectKind.FOLDER and not name.strip("/"):
            return ObjectRef(kind, "vm", f"{self.target.dc_root}/vm")

        if name.startswith("/"):
            return ObjectRef(kind, posixpath.basename(name), name) if self.exists(kind, name) else NOT_FOUND

        hits = self._find(self.search_root(kind), kind, name)
        if not hits:
            self.logger.debug("inventory: %s %r not found", kind.value, name)
            return NOT_FOUND
        if len(hits) > 1:
            Log.warn_once(
                self.logger,
                ("ambiguous", kind.value, name),
                f"{kind.value} {name!r} has {len(hits)} matches, using {hits[0]}",
            )
        return ObjectRef(kind, name, hits[0])

    def exists(self, kind: ObjectKind, path: str) -> bool:
        """Existence of an object at an inventory path (or a bare name inside the scope)."""
        if not path.startswith("/"):
            return self.resolve(kind, path) is not NOT_FOUND
        parent, leaf = posixpath.split(path.rstrip("/"))
        if not leaf:
            return False
        hits = self._find(parent or "/", kind, leaf)
        return path.rstrip("/") in hits

    def list_names(self, kind: ObjectKind) -> List[str]:
        hits = self._find(self.search_root(kind), kind, "")
        return sorted({posixpath.basename(h) for h in hits if h})

    def vm_state(self, name: str) -> VmState:
        """
        Distinguish absent / plain VM / template for `name` within the datacenter.

        More than one match is reported through VmState.duplicate; the kind is
        TEMPLATE only if every match is a template.
        """
        paths = tuple(self._find(self.search_root(ObjectKind.VM), ObjectKind.VM, name))
        if not paths:
            return VM_ABSENT

        kinds = []
        for p in paths:
            try:
                is_tpl = self._read(lambda: self.cli.vm_is_template(p), "vm.info")
                kinds.append(VmKind.TEMPLATE if is_tpl else VmKind.VM)
            except ClusterError as e:
                if classify(e) is ErrorClass.NOT_FOUND:
                    # Vanished between find and info.
                    continue
                raise
        if not kinds:
            return VM_ABSENT
        kind = VmKind.TEMPLATE if all(k is VmKind.TEMPLATE for k in kinds) else VmKind.VM
        return VmState(kind, paths)

    # -------- run preconditions

    def check_connectivity(self) -> Dict[str, Any]:
        try:
            about = self.cli.about()
        except ClusterError as e:
            cls = classify(e)
            code = ExitCode.AUTH if cls is ErrorClass.AUTH else ExitCode.CONNECTIVITY
            raise ConnectivityError(code=code, msg=f"cannot reach vCenter: {e}", cause=e) from e
        info = about.get("about") or about.get("About") or about
        self.logger.debug("inventory: connected to %s", info.get("fullName") or info.get("FullName") or "vCenter")
        return info

    def validate_target(self) -> Tuple[ObjectRef, ...]:
        """
        Every target object must exist. All misses are collected and reported
        together, each with the names that do exist for that kind.
        """
        refs: List[ObjectRef] = []
        missing: List[str] = []
        for kind, name in self.target.required_objects():
            ref = self.resolve(kind, name)
            if isinstance(ref, ObjectRef):
                refs.append(ref)
                continue
            avail = self.list_names(kind)
            shown = ", ".join(avail[:20]) + (" ..." if len(avail) > 20 else "")
            missing.append(f"{kind.value} {name!r} not found (available: {shown or 'none'})")

        if missing:
            raise PreconditionError(
                msg="cluster target invalid: " + "; ".join(missing),
                context={"target": self.target.to_dict()},
            )
        return tuple(refs)
