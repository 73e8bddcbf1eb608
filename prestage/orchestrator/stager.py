# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Per-template staging state machine.

    Pending -> Checking -> AlreadyStaged
                        -> Converting -> Uploading -> Importing -> MarkingTemplate -> Staged
                        -> Failed(reason)

Cluster inventory is the only source of truth: every decision is taken from
what Checking observes, and every create call is treated as a possible race
with another writer (an "already exists" answer is re-checked, never assumed
to be a failure).
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from ..converters.extractors.ova import OVA
from ..converters.qemu_converter import ImageConverter
from ..core.exceptions import (
    ClusterError,
    ConversionError,
    DiskImportError,
    FailureReason,
    Fatal,
    MarkTemplateIncomplete,
    StagingError,
    UploadError,
)
from ..core.logger import Log
from ..core.models import (
    ConvertedArtifact,
    Placement,
    SourceFormat,
    StagingResult,
    TemplateSpec,
    VmKind,
    VmState,
)
from ..core.retry import CONTINUE, retry_operation
from ..vmware.inventory import ClusterInventory
from ..vmware.vmware_utils import safe_name
from ..vmware.vsphere.errors import ErrorClass, classify, is_transient


class StageState(str, Enum):
    PENDING = "pending"
    CHECKING = "checking"
    ALREADY_STAGED = "already_staged"
    CONVERTING = "converting"
    UPLOADING = "uploading"
    IMPORTING = "importing"
    MARKING_TEMPLATE = "marking_template"
    STAGED = "staged"
    FAILED = "failed"


# Reason recorded when an unclassified error escapes while in a given state.
_STATE_REASON = {
    StageState.PENDING: FailureReason.PRECONDITION,
    StageState.CHECKING: FailureReason.PRECONDITION,
    StageState.CONVERTING: FailureReason.CONVERSION,
    StageState.UPLOADING: FailureReason.UPLOAD,
    StageState.IMPORTING: FailureReason.IMPORT,
    StageState.MARKING_TEMPLATE: FailureReason.MARK_TEMPLATE_INCOMPLETE,
}


class ImportStrategy(str, Enum):
    AUTO = "auto"
    DIRECT = "direct"
    COMPOSE = "compose"


class RepairPolicy(str, Enum):
    RESTAGE = "restage"
    MARK = "mark"


@dataclass(frozen=True)
class StagerOptions:
    import_strategy: ImportStrategy = ImportStrategy.AUTO
    repair_policy: RepairPolicy = RepairPolicy.RESTAGE
    force: bool = False
    dry_run: bool = False
    retries: int = 3
    keep_artifacts: bool = False
    retry_base_s: float = 2.0
    retry_max_s: float = 60.0
    retry_jitter_s: float = 1.0


@dataclass
class _Attempt:
    spec: TemplateSpec
    log: Any
    vm_path: str
    state: StageState = StageState.PENDING
    history: List[StageState] = field(default_factory=list)
    created_vm: bool = False
    used_ds_dir: bool = False
    artifact: Optional[ConvertedArtifact] = None


class _Conflict(Exception):
    """Create call lost a race; carries the already_present result if the winner finished."""

    def __init__(self, result: StagingResult):
        super().__init__(result.name)
        self.result = result


class TemplateStager:
    def __init__(
        self,
        *,
        cli: Any,
        inventory: ClusterInventory,
        converter: ImageConverter,
        placement: Placement,
        options: StagerOptions,
        logger: logging.Logger,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cli = cli
        self.inventory = inventory
        self.converter = converter
        self.placement = placement
        self.options = options
        self.logger = logger
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def stage(self, spec: TemplateSpec) -> StagingResult:
        """Drive one template to AlreadyStaged, Staged or Failed. Never raises for per-template faults."""
        att = _Attempt(
            spec=spec,
            log=Log.bind(self.logger, template=spec.name),
            vm_path=f"{self.placement.folder.rstrip('/')}/{spec.name}",
        )
        t0 = time.monotonic()

        try:
            result = self._run(att)
        except _Conflict as c:
            result = c.result
        except StagingError as e:
            result = self._fail(att, e.reason, e, cleanup=e.reason is not FailureReason.MARK_TEMPLATE_INCOMPLETE)
        except ConversionError as e:
            result = self._fail(att, FailureReason.CONVERSION, e, cleanup=True)
        except (Fatal, KeyboardInterrupt):
            # Run-level abort; partial objects are repaired by the next run.
            raise
        except ClusterError as e:
            result = self._fail(att, _STATE_REASON.get(att.state, FailureReason.IMPORT), e, cleanup=True)
        except Exception as e:
            att.log.exception("Unexpected error while %s", att.state.value)
            result = self._fail(att, _STATE_REASON.get(att.state, FailureReason.IMPORT), e, cleanup=True)

        if result.ok and att.artifact is not None and not self.options.keep_artifacts:
            self.converter.discard(att.artifact)

        return StagingResult(
            name=result.name,
            outcome=result.outcome,
            reason=result.reason,
            message=result.message,
            detail=result.detail,
            duration_s=time.monotonic() - t0,
        )

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _enter(self, att: _Attempt, state: StageState) -> None:
        att.log.debug("state %s -> %s", att.state.value, state.value)
        att.history.append(state)
        att.state = state

    def _run(self, att: _Attempt) -> StagingResult:
        spec = att.spec
        opts = self.options

        self._enter(att, StageState.CHECKING)
        existing = self.inventory.vm_state(spec.name)

        if existing.duplicate:
            raise StagingError(
                reason=FailureReason.PRECONDITION,
                msg=f"{len(existing.paths)} objects named {spec.name!r}: {', '.join(existing.paths)}",
            )

        if existing.kind is VmKind.TEMPLATE and not opts.force:
            self._enter(att, StageState.ALREADY_STAGED)
            att.log.info("Template already present: %s", existing.path)
            return StagingResult.already_present(spec.name, detail=existing.path or "")

        if existing.kind is VmKind.VM:
            att.log.warning("%s exists as a plain VM, not a template", existing.path)
            if opts.repair_policy is RepairPolicy.MARK:
                if opts.dry_run:
                    return StagingResult.staged(spec.name, detail="dry-run: mark existing VM as template")
                return self._mark_and_verify(att, existing.path or att.vm_path, detail="repaired: marked in place")

        if not spec.source.is_file():
            if existing.kind is VmKind.VM:
                # Nothing to restage from; the plain VM stays for a later run or --repair-policy mark.
                raise MarkTemplateIncomplete(
                    msg=f"{existing.path or att.vm_path} is a plain VM and cannot be restaged: source image not found: {spec.source}"
                )
            raise StagingError(reason=FailureReason.FILE_MISSING, msg=f"source image not found: {spec.source}")

        strategy = self._select_strategy(spec)

        if opts.dry_run:
            verb = "replace and stage" if existing.kind is not VmKind.ABSENT else "stage"
            att.log.info("dry-run: would %s via %s", verb, strategy.value)
            return StagingResult.staged(spec.name, detail=f"dry-run: would {verb} via {strategy.value}")

        if existing.kind is not VmKind.ABSENT:
            self._remove_existing(att, existing)

        if strategy is ImportStrategy.DIRECT:
            result = self._direct_import(att)
            if result is not None:
                return result
            att.log.warning("Direct import not supported for %s; falling back to compose", spec.source.name)

        return self._compose(att)

    def _select_strategy(self, spec: TemplateSpec) -> ImportStrategy:
        chosen = self.options.import_strategy
        if chosen is ImportStrategy.COMPOSE:
            return ImportStrategy.COMPOSE
        if spec.format is SourceFormat.OVA:
            return ImportStrategy.DIRECT
        if chosen is ImportStrategy.DIRECT:
            raise StagingError(
                reason=FailureReason.PRECONDITION,
                msg=f"direct import only accepts OVA archives; {spec.format.value} needs the compose strategy",
            )
        return ImportStrategy.COMPOSE

    # ------------------------------------------------------------------
    # Strategy 1: direct archive import
    # ------------------------------------------------------------------

    def _direct_import(self, att: _Attempt) -> Optional[StagingResult]:
        """
        import.ova with thin provisioning and MarkAsTemplate.

        Returns None when the import facility refuses the archive and the
        strategy allows falling back to compose.
        """
        spec = att.spec
        self._enter(att, StageState.IMPORTING)

        networks = OVA.network_names(att.log, spec.source)
        options = {
            "DiskProvisioning": "thin",
            "MarkAsTemplate": True,
            "PowerOn": False,
            "NetworkMapping": [{"Name": n, "Network": self.placement.network} for n in networks],
        }

        def attempt() -> None:
            att.created_vm = True
            self.cli.import_ova(
                spec.source,
                name=spec.name,
                datastore=self.placement.datastore,
                pool=self.placement.pool,
                folder=self.placement.folder,
                options=options,
            )

        def before_retry(_: BaseException) -> Any:
            st = self.inventory.vm_state(spec.name)
            if st.kind is VmKind.TEMPLATE:
                att.log.info("Previous import attempt completed server-side")
                return st
            if st.kind is VmKind.VM:
                att.log.info("Removing partial object from failed import attempt")
                self._destroy_quietly(att, st.path or att.vm_path)
            return CONTINUE

        att.log.info("Importing %s (thin, mark as template)", spec.source.name)
        try:
            retry_operation(
                attempt,
                max_attempts=self.options.retries,
                base_backoff_s=self.options.retry_base_s,
                max_backoff_s=self.options.retry_max_s,
                jitter_s=self.options.retry_jitter_s,
                exceptions=ClusterError,
                should_retry=is_transient,
                before_retry=before_retry,
                operation_name=f"import.ova {spec.name}",
                logger=att.log,
                sleep=self._sleep,
            )
        except ClusterError as e:
            cls = classify(e)
            if cls is ErrorClass.ALREADY_EXISTS:
                self._raise_conflict(att, e)
            if cls is ErrorClass.NOT_SUPPORTED and self.options.import_strategy is ImportStrategy.AUTO:
                att.log.debug("import.ova refused: %s", e)
                self._cleanup(att)
                att.created_vm = False
                return None
            raise DiskImportError(msg=f"import.ova failed: {e}", cause=e) from e

        return self._verify_or_mark(att)

    def _verify_or_mark(self, att: _Attempt) -> StagingResult:
        self._enter(att, StageState.MARKING_TEMPLATE)
        st = self.inventory.vm_state(att.spec.name)
        if st.kind is VmKind.TEMPLATE:
            self._enter(att, StageState.STAGED)
            att.log.info("Staged (direct import)")
            return StagingResult.staged(att.spec.name, detail="direct import")
        if st.kind is VmKind.ABSENT:
            raise DiskImportError(msg="import reported success but no object exists")
        # Facility ignored MarkAsTemplate.
        return self._mark_and_verify(att, st.path or att.vm_path, detail="direct import")

    # ------------------------------------------------------------------
    # Strategy 2: manual compose
    # ------------------------------------------------------------------

    def _compose(self, att: _Attempt) -> StagingResult:
        spec = att.spec
        p = self.placement

        self._enter(att, StageState.CONVERTING)
        att.artifact = self.converter.convert(spec, force=self.options.force)

        self._enter(att, StageState.UPLOADING)
        guest_id = spec.guest_id or "otherLinux64Guest"
        att.log.info("Creating VM shell (%d MB, %d vCPU, %s)", spec.memory_mb, spec.cpus, guest_id)
        att.created_vm = True
        try:
            self.cli.create_vm(
                spec.name,
                memory_mb=spec.memory_mb,
                cpus=spec.cpus,
                guest_id=guest_id,
                network=p.network,
                datastore=p.datastore,
                pool=p.pool,
                folder=p.folder,
            )
        except ClusterError as e:
            if classify(e) is ErrorClass.ALREADY_EXISTS:
                self._raise_conflict(att, e)
            raise StagingError(reason=FailureReason.CREATE_VM, msg=f"vm.create failed: {e}", cause=e) from e

        try:
            controller = self.cli.add_scsi_controller(att.vm_path, spec.disk_controller.value)
        except ClusterError as e:
            raise StagingError(reason=FailureReason.ATTACH_DISK, msg=f"adding {spec.disk_controller.value} controller failed: {e}", cause=e) from e

        att.used_ds_dir = True
        artifact = att.artifact
        att.log.info("Uploading %s to [%s] %s/", artifact.path.name, p.datastore, safe_name(spec.name))
        try:
            disk = retry_operation(
                lambda: self.cli.import_vmdk(artifact.path, datastore=p.datastore, pool=p.pool, ds_dir=safe_name(spec.name)),
                max_attempts=self.options.retries,
                base_backoff_s=self.options.retry_base_s,
                max_backoff_s=self.options.retry_max_s,
                jitter_s=self.options.retry_jitter_s,
                exceptions=ClusterError,
                should_retry=is_transient,
                operation_name=f"import.vmdk {spec.name}",
                logger=att.log,
                sleep=self._sleep,
            )
        except ClusterError as e:
            raise UploadError(msg=f"disk upload failed: {e}", cause=e) from e

        self._enter(att, StageState.IMPORTING)
        try:
            self.cli.attach_disk(att.vm_path, disk, datastore=p.datastore, controller=controller or None)
        except ClusterError as e:
            raise StagingError(reason=FailureReason.ATTACH_DISK, msg=f"disk attach failed: {e}", cause=e) from e

        return self._mark_and_verify(att, att.vm_path, detail="compose")

    # ------------------------------------------------------------------
    # Finalisation
    # ------------------------------------------------------------------

    def _mark_and_verify(self, att: _Attempt, vm_path: str, *, detail: str) -> StagingResult:
        """MarkingTemplate is mandatory and last; only a verified template counts as Staged."""
        self._enter(att, StageState.MARKING_TEMPLATE)

        def before_retry(_: BaseException) -> Any:
            st = self.inventory.vm_state(att.spec.name)
            if st.kind is VmKind.TEMPLATE:
                att.log.info("Previous mark attempt completed server-side")
                return st
            return CONTINUE

        try:
            retry_operation(
                lambda: self.cli.mark_template(vm_path),
                max_attempts=self.options.retries,
                base_backoff_s=self.options.retry_base_s,
                max_backoff_s=self.options.retry_max_s,
                jitter_s=self.options.retry_jitter_s,
                exceptions=ClusterError,
                should_retry=is_transient,
                before_retry=before_retry,
                operation_name=f"markastemplate {att.spec.name}",
                logger=att.log,
                sleep=self._sleep,
            )
        except ClusterError as e:
            raise MarkTemplateIncomplete(msg=f"mark as template failed: {e}", cause=e) from e

        st = self.inventory.vm_state(att.spec.name)
        if st.kind is not VmKind.TEMPLATE:
            raise MarkTemplateIncomplete(msg=f"{vm_path} is still {st.kind.value} after mark as template")

        self._enter(att, StageState.STAGED)
        att.log.info("Staged (%s)", detail)
        return StagingResult.staged(att.spec.name, detail=detail)

    def _raise_conflict(self, att: _Attempt, err: ClusterError) -> None:
        # Another creator owns the name now; nothing of ours to clean up.
        att.created_vm = False
        att.used_ds_dir = False
        st = self.inventory.vm_state(att.spec.name)
        if st.kind is VmKind.TEMPLATE and not st.duplicate:
            self._enter(att, StageState.ALREADY_STAGED)
            att.log.info("Created concurrently by another run; already present")
            raise _Conflict(StagingResult.already_present(att.spec.name, detail="created concurrently"))
        raise StagingError(
            reason=FailureReason.CREATE_VM,
            msg=f"{att.spec.name!r} was created concurrently and is not a template yet ({err}); left for the next run",
            cause=err,
        )

    # ------------------------------------------------------------------
    # Removal / cleanup
    # ------------------------------------------------------------------

    def _remove_existing(self, att: _Attempt, st: VmState) -> None:
        """Clear the name before restaging (repair of a plain VM, or --force on a template)."""
        path = st.path or att.vm_path
        was_template = st.kind is VmKind.TEMPLATE
        att.log.info("Removing existing %s %s", st.kind.value, path)
        try:
            if was_template:
                self.cli.mark_vm(path, pool=self.placement.pool)
            try:
                self.cli.power_off(path)
            except ClusterError as e:
                att.log.debug("power off %s: %s", path, e)
            self.cli.destroy_vm(path)
        except ClusterError as e:
            if was_template:
                raise StagingError(reason=FailureReason.PRECONDITION, msg=f"cannot replace existing template: {e}", cause=e) from e
            raise MarkTemplateIncomplete(msg=f"repair of plain VM failed: {e}", cause=e) from e
        self._rm_ds_dir(att)

    def _destroy_quietly(self, att: _Attempt, path: str) -> None:
        try:
            self.cli.destroy_vm(path)
        except ClusterError as e:
            if classify(e) is not ErrorClass.NOT_FOUND:
                att.log.warning("Cleanup: could not destroy %s: %s", path, e)

    def _rm_ds_dir(self, att: _Attempt) -> None:
        d = safe_name(att.spec.name)
        try:
            self.cli.datastore_rm(self.placement.datastore, d)
        except ClusterError as e:
            if classify(e) is not ErrorClass.NOT_FOUND:
                att.log.warning("Cleanup: could not remove [%s] %s: %s", self.placement.datastore, d, e)

    def _cleanup(self, att: _Attempt) -> None:
        """Best-effort removal of objects this attempt created. Failures are logged only."""
        if att.created_vm:
            self._destroy_quietly(att, att.vm_path)
        if att.used_ds_dir:
            self._rm_ds_dir(att)

    def _fail(self, att: _Attempt, reason: FailureReason, err: BaseException, *, cleanup: bool) -> StagingResult:
        failed_in = att.state
        self._enter(att, StageState.FAILED)
        msg = str(err) or type(err).__name__
        Log.fail(att.log, f"{reason.value}: {msg}", state=failed_in.value)
        if cleanup and not self.options.dry_run:
            self._cleanup(att)
        elif reason is FailureReason.MARK_TEMPLATE_INCOMPLETE:
            att.log.warning("Leaving %s in place; the next run will repair it", att.vm_path)
        return StagingResult.failed(att.spec.name, reason, msg)
