# SPDX-License-Identifier: LGPL-3.0-or-later
# prestage/converters/extractors/ova.py
from __future__ import annotations

import logging
import os
import tarfile
import tempfile
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Tuple
from xml.etree.ElementTree import Element

from defusedxml.ElementTree import ParseError, fromstring
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeElapsedColumn,
    TransferSpeedColumn,
)

from ...core.exceptions import ExtractionError
from ...core.utils import U

_DEFAULT_OVF_NS = "http://schemas.dmtf.org/ovf/envelope/1"


def _ns_of(root: Element) -> str:
    if root.tag.startswith("{") and "}" in root.tag:
        return root.tag.split("}", 1)[0][1:]
    return _DEFAULT_OVF_NS


def _attr(el: Element, ns_uri: str, name: str) -> Optional[str]:
    return el.get(f"{{{ns_uri}}}{name}") or el.get(f"ovf:{name}") or el.get(name)


class OVA:
    """
    OVA (tar + OVF descriptor) helpers.

    Extraction is a plain archive step: no format conversion happens here.
    Any failure to produce an embedded disk is an ExtractionError.
    """

    # ------------------------------------------------------------------
    # Descriptor access (no extraction)
    # ------------------------------------------------------------------

    @staticmethod
    def read_descriptor(ova: Path) -> Optional[Element]:
        """Parse the first *.ovf member straight out of the archive."""
        try:
            with tarfile.open(ova, mode="r:*") as tar:
                for member in tar:
                    if member.isreg() and member.name.lower().endswith(".ovf"):
                        f = tar.extractfile(member)
                        if f is None:
                            return None
                        return fromstring(f.read())
        except (tarfile.TarError, OSError) as e:
            raise ExtractionError(msg=f"cannot read OVA {ova}: {e}", cause=e) from e
        except (ParseError, ValueError) as e:
            raise ExtractionError(msg=f"invalid OVF descriptor in {ova}: {e}", cause=e) from e
        return None

    @staticmethod
    def network_names(logger: logging.Logger, ova: Path) -> List[str]:
        """Network names declared in the OVF NetworkSection, in document order."""
        root = OVA.read_descriptor(ova)
        if root is None:
            logger.debug("ova: %s has no OVF descriptor", ova)
            return []
        ns_uri = _ns_of(root)
        names: List[str] = []
        for net in root.iter(f"{{{ns_uri}}}Network"):
            name = _attr(net, ns_uri, "name")
            if name and name not in names:
                names.append(name)
        return names

    @staticmethod
    def disk_hrefs(root: Element) -> List[str]:
        """<Disk ovf:fileRef> resolved through <File ovf:id/ovf:href>."""
        ns_uri = _ns_of(root)
        file_map: Dict[str, str] = {}
        for f in root.iter(f"{{{ns_uri}}}File"):
            fid = _attr(f, ns_uri, "id")
            href = _attr(f, ns_uri, "href")
            if fid and href:
                file_map[fid] = href

        hrefs: List[str] = []
        for disk in root.iter(f"{{{ns_uri}}}Disk"):
            ref = _attr(disk, ns_uri, "fileRef")
            href = file_map.get(ref or "")
            if href and href not in hrefs:
                hrefs.append(href)
        return hrefs

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    @staticmethod
    def extract_disks(
        logger: logging.Logger,
        ova: Path,
        outdir: Path,
        *,
        show_progress: bool = False,
    ) -> List[Path]:
        """
        Safely extract an OVA into outdir and return its disk images.

        Disks come from the OVF references; with no usable OVF the first
        *.vmdk member is taken. No disk at all is an ExtractionError.
        """
        ova = Path(ova)
        outdir = Path(outdir)
        U.ensure_dir(outdir)

        if not ova.is_file():
            raise ExtractionError(msg=f"OVA not found: {ova}")

        logger.info("Extracting OVA %s", ova.name)
        skipped = 0
        try:
            with tarfile.open(ova, mode="r:*") as tar:
                members = tar.getmembers()
                total = sum(int(m.size or 0) for m in members if m.isreg())

                if show_progress:
                    with Progress(
                        TextColumn("{task.description}"),
                        BarColumn(),
                        DownloadColumn(),
                        TransferSpeedColumn(),
                        TimeElapsedColumn(),
                    ) as progress:
                        task = progress.add_task(f"Extracting {ova.name}", total=total or len(members))
                        for member in members:
                            wrote, status = OVA._safe_extract_one(tar, member, outdir)
                            skipped += status != "extracted"
                            progress.update(task, advance=wrote if total else 1)
                else:
                    for member in members:
                        _, status = OVA._safe_extract_one(tar, member, outdir)
                        skipped += status != "extracted"
        except (tarfile.TarError, EOFError) as e:
            raise ExtractionError(msg=f"corrupt OVA archive {ova.name}: {e}", cause=e) from e
        except ValueError as e:
            raise ExtractionError(msg=f"unsafe OVA member in {ova.name}: {e}", cause=e) from e

        if skipped:
            logger.warning("Security: skipped %d special tar members (links/devices/fifos)", skipped)

        disks = OVA._referenced_disks(logger, outdir)
        if not disks:
            disks = sorted(p for p in outdir.rglob("*.vmdk") if p.is_file())[:1]
            if disks:
                logger.debug("ova: no OVF disk references, using %s", disks[0].name)

        disks = [d for d in disks if d.is_file() and d.stat().st_size > 0]
        if not disks:
            raise ExtractionError(msg=f"no embedded disk image found in {ova.name}")

        for d in disks:
            logger.debug("ova: disk %s (%s)", d.name, U.human_bytes(d.stat().st_size))
        return disks

    @staticmethod
    def _referenced_disks(logger: logging.Logger, outdir: Path) -> List[Path]:
        disks: List[Path] = []
        for ovf in sorted(outdir.glob("*.ovf")):
            try:
                root = fromstring(ovf.read_bytes())
            except (ParseError, ValueError) as e:
                logger.warning("Failed to parse OVF %s: %s", ovf.name, e)
                continue
            for href in OVA.disk_hrefs(root):
                try:
                    p = OVA._safe_out_path(outdir, href)
                except ValueError as e:
                    logger.warning("Security: skipping unsafe OVF href=%r: %s", href, e)
                    continue
                if not p.exists():
                    logger.warning("OVF references %s but it is not in the archive", href)
                    continue
                if p not in disks:
                    disks.append(p)
        return disks

    # ------------------------------------------------------------------
    # Safe path helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _clean_posix_relpath(name: str) -> PurePosixPath:
        """
        Normalize a tar/OVF path to a safe relative POSIX path:
        no absolute paths, no '..', no empty result.
        """
        raw = (name or "").replace("\\", "/").lstrip("/")

        clean_parts: List[str] = []
        for part in PurePosixPath(raw).parts:
            if part in ("", "."):
                continue
            if part == "..":
                raise ValueError(f"Blocked '..' in path: {name!r}")
            clean_parts.append(part)

        if not clean_parts:
            raise ValueError(f"Empty/invalid path: {name!r}")
        return PurePosixPath(*clean_parts)

    @staticmethod
    def _assert_no_symlink_parents(outdir_r: Path, target: Path) -> None:
        rel = target.relative_to(outdir_r)
        cur = outdir_r
        for part in rel.parts[:-1]:
            cur = cur / part
            if cur.is_symlink():
                raise ValueError(f"Parent component is a symlink: {cur}")

    @staticmethod
    def _safe_out_path(outdir: Path, rel: str) -> Path:
        outdir_r = Path(outdir).resolve()
        pp = OVA._clean_posix_relpath(rel)
        target = (outdir_r / Path(*pp.parts)).resolve()

        if target != outdir_r and outdir_r not in target.parents:
            raise ValueError(f"Blocked path traversal: {rel!r}")

        OVA._assert_no_symlink_parents(outdir_r, target)
        return target

    @staticmethod
    def _safe_extract_one(tar: tarfile.TarFile, member: tarfile.TarInfo, outdir: Path) -> Tuple[int, str]:
        """
        Extract a single tar member safely.

        Returns (bytes_written, status), status in: extracted | skipped_special | skipped_other
        """
        if member.issym() or member.islnk() or member.ischr() or member.isblk() or member.isfifo():
            return (0, "skipped_special")

        if member.isdir():
            OVA._safe_out_path(outdir, member.name).mkdir(parents=True, exist_ok=True)
            return (0, "extracted")

        if not member.isreg():
            return (0, "skipped_other")

        target = OVA._safe_out_path(outdir, member.name)
        target.parent.mkdir(parents=True, exist_ok=True)

        src = tar.extractfile(member)
        if src is None:
            return (0, "skipped_other")

        wrote = 0
        tmp_path: Optional[Path] = None
        try:
            with tempfile.NamedTemporaryFile(
                dir=str(target.parent),
                prefix=f".{target.name}.",
                suffix=".tmp",
                delete=False,
            ) as tf:
                tmp_path = Path(tf.name)
                while True:
                    chunk = src.read(1024 * 1024)
                    if not chunk:
                        break
                    tf.write(chunk)
                    wrote += len(chunk)

            os.replace(str(tmp_path), str(target))
            os.chmod(target, 0o644)
        finally:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink()

        return (wrote, "extracted")
