# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import json
import logging
import os
import re
import selectors
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from rich.progress import (
    BarColumn,
    Progress,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from ..core.exceptions import ConversionError
from ..core.models import ConvertedArtifact, SourceFormat, TemplateSpec
from ..core.utils import U
from ..vmware.vmware_utils import safe_name
from .extractors.ova import OVA


@dataclass(frozen=True)
class VmdkTarget:
    """
    Cluster-compatible disk format. Pinned by policy, not per call.

    streamOptimized is what `govc import.vmdk` accepts without a second
    conversion on the ESXi side.
    """

    format: str = "vmdk"
    adapter_type: str = "lsilogic"
    subformat: str = "streamOptimized"
    compat6: bool = True

    def options(self) -> str:
        opts = [f"adapter_type={self.adapter_type}", f"subformat={self.subformat}"]
        if self.compat6:
            opts.append("compat6")
        return ",".join(opts)


VMDK_TARGET = VmdkTarget()


class ImageConverter:
    """
    qemu-img convert wrapper for staging:
      - deterministic output path per template name
      - atomic output (.part -> rename); a prior good artifact is never clobbered
      - reuse of a previous artifact built from the same source file, unless forced
      - OVA sources are extracted first (ExtractionError is distinct from ConversionError)
      - qemu-img -p percent shown with rich when interactive, logged every 10s otherwise
      - Ctrl+C terminates qemu-img and removes the partial file
    """

    _RE_PAREN = re.compile(r"\((\d+(?:\.\d+)?)/100%\)")
    _RE_PERCENT = re.compile(r"(\d+(?:\.\d+)?)%")

    def __init__(
        self,
        logger: logging.Logger,
        workdir: Path,
        *,
        target: VmdkTarget = VMDK_TARGET,
        show_progress: bool = False,
        max_parallel: int = 1,
        qemu_img: str = "qemu-img",
    ):
        self.logger = logger
        self.workdir = Path(workdir)
        self.target = target
        self.show_progress = show_progress
        self.qemu_img = qemu_img
        self._slots = threading.BoundedSemaphore(max(1, int(max_parallel)))

    # ---------------------------------------------------------------------
    # Paths
    # ---------------------------------------------------------------------

    def artifact_dir(self, name: str) -> Path:
        return self.workdir / safe_name(name)

    def artifact_path(self, name: str) -> Path:
        n = safe_name(name)
        return self.workdir / n / f"{n}.{self.target.format}"

    @staticmethod
    def provenance_path(artifact: Path) -> Path:
        return artifact.with_name(artifact.name + ".source.json")

    def discard(self, artifact: ConvertedArtifact) -> None:
        U.safe_unlink(artifact.path)
        U.safe_unlink(self.provenance_path(artifact.path))
        d = artifact.path.parent
        try:
            d.rmdir()
        except OSError:
            pass

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------

    def convert(self, spec: TemplateSpec, *, force: bool = False) -> ConvertedArtifact:
        """
        Produce the cluster-compatible disk for `spec`.

        Raises ConversionError (ExtractionError for OVA unpack problems).
        """
        dst = self.artifact_path(spec.name)
        src = Path(spec.source)

        if not src.is_file():
            raise ConversionError(msg=f"source image not found: {src}")

        if not force and self._reusable(dst, src):
            size = dst.stat().st_size
            self.logger.info("Reusing converted image %s (%s)", dst, U.human_bytes(size))
            return ConvertedArtifact(path=dst, template=spec.name, size=size, reused=True)

        if spec.format is SourceFormat.OVA:
            extract_dir = self.artifact_dir(spec.name) / "extract"
            try:
                disks = OVA.extract_disks(self.logger, src, extract_dir, show_progress=self.show_progress)
                if len(disks) > 1:
                    self.logger.warning("%s carries %d disks; staging only %s", src.name, len(disks), disks[0].name)
                self.convert_image(disks[0], dst, in_format=SourceFormat.OVA.qemu_format)
            finally:
                U.safe_rmtree(extract_dir, self.logger)
        else:
            self.convert_image(src, dst, in_format=spec.format.qemu_format)

        self._write_provenance(dst, src)

        size = dst.stat().st_size
        return ConvertedArtifact(path=dst, template=spec.name, size=size, reused=False)

    def convert_image(self, src: Path, dst: Path, *, in_format: str) -> Path:
        """convert(sourcePath, sourceFormat) into the pinned target at dst."""
        if U.which(self.qemu_img) is None:
            raise ConversionError(msg=f"{self.qemu_img} not found on PATH")

        U.ensure_dir(dst.parent)
        tmp_dst = dst.with_name(dst.name + ".part")
        U.safe_unlink(tmp_dst)

        cmd = self._build_convert_cmd(src=src, dst=tmp_dst, in_format=in_format)

        with self._slots:
            virt_size = self._qemu_img_info(src, in_format)
            self.logger.info(
                "Converting %s -> %s (%s -> %s, %s)",
                src.name,
                dst.name,
                in_format,
                self.target.format,
                U.human_bytes(virt_size) if virt_size else "size unknown",
            )
            self.logger.debug("cmd: %s", U.pretty_cmd(cmd))

            try:
                rc, stderr_lines = self._run_convert_process(cmd, label=dst.stem, virt_size=virt_size)
            except KeyboardInterrupt:
                self.logger.warning("Interrupted; aborting conversion of %s", src.name)
                U.safe_unlink(tmp_dst)
                raise

        if rc != 0:
            U.safe_unlink(tmp_dst)
            tail = U.tail_lines("\n".join(stderr_lines), 8)
            raise ConversionError(
                msg=f"qemu-img convert failed (rc={rc}) for {src.name}: {' | '.join(tail) or 'no output'}",
                context={"src": str(src), "dst": str(dst)},
            )

        # Post-condition: a zero-length or missing output means the disk filled up.
        try:
            size = tmp_dst.stat().st_size
        except FileNotFoundError:
            size = 0
        if size <= 0:
            U.safe_unlink(tmp_dst)
            raise ConversionError(
                msg=f"qemu-img produced no output for {src.name} (insufficient disk space in {dst.parent}?)"
            )

        try:
            os.replace(tmp_dst, dst)
        except OSError as e:
            U.safe_unlink(tmp_dst)
            raise ConversionError(msg=f"cannot move converted image into place: {e}", cause=e) from e

        self.logger.info("Converted %s (%s)", dst.name, U.human_bytes(size))
        return dst

    # ---------------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------------

    @staticmethod
    def _source_stamp(src: Path) -> Dict[str, Any]:
        st = src.stat()
        return {"source": str(src.resolve()), "size": st.st_size, "mtime_ns": st.st_mtime_ns}

    def _write_provenance(self, dst: Path, src: Path) -> None:
        # Written only after the artifact is in place; a missing sidecar means "rebuild".
        side = self.provenance_path(dst)
        tmp = side.with_name(side.name + ".part")
        tmp.write_text(json.dumps(self._source_stamp(src), sort_keys=True), encoding="utf-8")
        os.replace(tmp, side)

    def _reusable(self, dst: Path, src: Path) -> bool:
        """A previous artifact counts only if it was built from this exact source file."""
        try:
            if dst.stat().st_size <= 0:
                return False
            recorded = json.loads(self.provenance_path(dst).read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return False
        if recorded != self._source_stamp(src):
            self.logger.info("Converted image %s was built from a different source; reconverting", dst.name)
            return False
        return True

    def _build_convert_cmd(self, *, src: Path, dst: Path, in_format: str) -> List[str]:
        return [
            self.qemu_img,
            "convert",
            "-p",
            "-f", in_format,
            "-O", self.target.format,
            "-o", self.target.options(),
            str(src),
            str(dst),
        ]

    def _qemu_img_info(self, src: Path, in_format: str) -> int:
        cmd = [self.qemu_img, "info", "--output=json", "-f", in_format, str(src)]
        try:
            cp = subprocess.run(cmd, capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or e.stdout or "").strip()
            raise ConversionError(msg=f"qemu-img info failed for {src.name}: {detail}", cause=e) from e
        try:
            info = json.loads(cp.stdout or "{}")
        except ValueError as e:
            raise ConversionError(msg=f"qemu-img info returned non-JSON for {src.name}", cause=e) from e
        return int(info.get("virtual-size", 0) or 0)

    @classmethod
    def _parse_progress_pct(cls, line: str) -> Optional[float]:
        s = (line or "").strip()
        if not s:
            return None
        m = cls._RE_PAREN.search(s) or cls._RE_PERCENT.search(s)
        if not m:
            return None
        v = float(m.group(1))
        return v if 0.0 <= v <= 100.0 else None

    def _run_convert_process(
        self,
        cmd: List[str],
        *,
        label: str,
        virt_size: int,
        poll_s: float = 0.25,
        log_every_s: float = 10.0,
    ) -> Tuple[int, List[str]]:
        """
        Run qemu-img and follow its -p output on stderr.

        qemu-img redraws progress with '\\r', so both '\\r' and '\\n' end a line.
        """
        start = time.time()
        stderr_lines: List[str] = []
        best_pct = 0.0
        last_log_t = start

        proc = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE, bufsize=0)
        assert proc.stderr is not None
        fd = proc.stderr.fileno()
        os.set_blocking(fd, False)
        buf = b""

        def read_available() -> None:
            nonlocal buf, best_pct
            while True:
                try:
                    chunk = os.read(fd, 65536)
                except BlockingIOError:
                    break
                if not chunk:
                    break
                buf += chunk
            parts = re.split(rb"[\r\n]", buf)
            buf = parts.pop()
            for raw in parts:
                line = U.to_text(raw).strip()
                if not line:
                    continue
                pct = self._parse_progress_pct(line)
                if pct is None:
                    stderr_lines.append(line)
                elif pct > best_pct:
                    best_pct = pct

        def log_progress(now: float) -> None:
            nonlocal last_log_t
            if (now - last_log_t) < log_every_s:
                return
            last_log_t = now
            if virt_size > 0:
                mb_s = ((best_pct / 100.0) * virt_size / max(1e-6, now - start)) / 1024 / 1024
                self.logger.info("Conversion progress %s: %.1f%% (~%.1f MB/s avg)", label, best_pct, mb_s)
            else:
                self.logger.info("Conversion progress %s: %.1f%%", label, best_pct)

        def pump(sel: selectors.BaseSelector, tick) -> None:
            while True:
                sel.select(timeout=poll_s)
                read_available()
                tick()
                if proc.poll() is not None:
                    break
            read_available()
            if buf.strip():
                stderr_lines.append(U.to_text(buf).strip())

        try:
            with selectors.DefaultSelector() as sel:
                sel.register(proc.stderr, selectors.EVENT_READ)
                if self.show_progress:
                    with Progress(
                        TextColumn("{task.description}"),
                        BarColumn(),
                        TaskProgressColumn(),
                        TimeElapsedColumn(),
                        TimeRemainingColumn(),
                    ) as progress:
                        task = progress.add_task(f"Converting {label}", total=100.0)
                        pump(sel, lambda: progress.update(task, completed=best_pct))
                        if proc.returncode == 0:
                            progress.update(task, completed=100.0)
                else:
                    pump(sel, lambda: log_progress(time.time()))
            return proc.wait(), stderr_lines
        except KeyboardInterrupt:
            proc.terminate()
            try:
                proc.wait(timeout=5.0)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
            raise
        finally:
            proc.stderr.close()
