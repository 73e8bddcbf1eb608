# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Driver loop: validate the cluster target once, then stage every declared
template independently and aggregate the outcomes into a Report.
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Sequence

from ..converters.qemu_converter import ImageConverter
from ..core.exceptions import FailureReason, Fatal
from ..core.logger import Log
from ..core.models import ClusterTarget, Placement, StagingResult, TemplateSpec
from ..vmware.inventory import ClusterInventory
from .report import Report
from .stager import StagerOptions, TemplateStager


class Reconciler:
    def __init__(
        self,
        *,
        cli: Any,
        converter: ImageConverter,
        options: StagerOptions,
        logger: logging.Logger,
        workers: int = 1,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.cli = cli
        self.converter = converter
        self.options = options
        self.logger = logger
        self.workers = max(1, int(workers))
        self._sleep = sleep

    def run(self, specs: Sequence[TemplateSpec], target: ClusterTarget) -> Report:
        """
        Raises ConnectivityError / PreconditionError before any per-template
        work; per-template failures only ever show up in the Report.
        """
        inventory = ClusterInventory(self.cli, target, self.logger, retries=self.options.retries, sleep=self._sleep)

        Log.step(self.logger, "Checking vCenter connectivity")
        inventory.check_connectivity()

        Log.step(self.logger, "Validating cluster target", **target.to_dict())
        placement = Placement.from_refs(inventory.validate_target())
        self.logger.debug("placement: %s", placement)

        stager = TemplateStager(
            cli=self.cli,
            inventory=inventory,
            converter=self.converter,
            placement=placement,
            options=self.options,
            logger=self.logger,
            sleep=self._sleep,
        )

        Log.banner(self.logger, f"Staging {len(specs)} template(s)")
        if self.workers > 1 and len(specs) > 1:
            results = self._run_parallel(stager, specs)
        else:
            results = [self._stage_one(stager, s) for s in specs]
        return Report.from_results(results)

    def _stage_one(self, stager: TemplateStager, spec: TemplateSpec) -> StagingResult:
        Log.step(self.logger, f"{spec.name} <- {spec.source.name} ({spec.format.value})")
        try:
            return stager.stage(spec)
        except (Fatal, KeyboardInterrupt):
            raise
        except Exception as e:
            # stage() already isolates known faults; this catches bugs.
            self.logger.exception("Unhandled error staging %s", spec.name)
            return StagingResult.failed(spec.name, FailureReason.IMPORT, f"{type(e).__name__}: {e}")

    def _run_parallel(self, stager: TemplateStager, specs: Sequence[TemplateSpec]) -> List[StagingResult]:
        workers = min(self.workers, len(specs))
        self.logger.info("Staging with %d parallel workers", workers)
        results: List[StagingResult] = []

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="stage")
        try:
            futs: Dict[Any, TemplateSpec] = {executor.submit(self._stage_one, stager, s): s for s in specs}
            for fut in as_completed(futs):
                results.append(fut.result())
        except BaseException:
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown(wait=True)
        return results
