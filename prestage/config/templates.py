# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# prestage/config/templates.py
"""
Declared template set and cluster target, built from merged config/CLI values.

YAML shapes accepted for `templates:`

    templates:
      ubuntu-24-packer: noble-server-cloudimg-amd64.ova      # bare source
      debian-12-packer:
        source: debian-12-genericcloud-amd64.qcow2
        memory_mb: 4096

    templates:
      - name: debian-13-packer
        source: /srv/images/debian-13-genericcloud-amd64.qcow2
        format: qcow2
        guest_id: other5xLinuxGuest

Every problem in the set is collected and reported at once as a usage error;
nothing here talks to the cluster.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..core.exceptions import ExitCode, Fatal
from ..core.models import ClusterTarget, DiskController, SourceFormat, TemplateSpec
from ..vmware.vmware_utils import safe_name

DEFAULT_FILES_DIR = "./files"

# Used when no `templates:` key is configured at all.
DEFAULT_TEMPLATES: Dict[str, str] = {
    "ubuntu-22-packer": "jammy-server-cloudimg-amd64.ova",
    "ubuntu-24-packer": "noble-server-cloudimg-amd64.ova",
    "debian-12-packer": "debian-12-genericcloud-amd64.qcow2",
    "debian-13-packer": "debian-13-genericcloud-amd64.qcow2",
}

_EXT_FORMATS = {
    ".ova": SourceFormat.OVA,
    ".qcow2": SourceFormat.QCOW2,
    ".img": SourceFormat.RAW,
    ".raw": SourceFormat.RAW,
}

_FORMAT_ALIASES = {
    "ova": SourceFormat.OVA,
    "qcow2": SourceFormat.QCOW2,
    "raw": SourceFormat.RAW,
    "img": SourceFormat.RAW,
}

_GUEST_PREFIXES = (
    ("ubuntu", "ubuntu64Guest"),
    ("debian", "other5xLinuxGuest"),
)
DEFAULT_GUEST_ID = "otherLinux64Guest"

_TEMPLATE_KEYS = {"name", "source", "format", "guest_id", "memory_mb", "cpus", "disk_controller"}

# cluster target key -> environment variables consulted in order
TARGET_ENV: Dict[str, Tuple[str, ...]] = {
    "datacenter": ("VSPHERE_DATACENTER", "GOVC_DATACENTER"),
    "cluster": ("VSPHERE_CLUSTER",),
    "datastore": ("VSPHERE_DATASTORE", "GOVC_DATASTORE"),
    "resource_pool": ("VSPHERE_RESOURCE_POOL", "GOVC_RESOURCE_POOL"),
    "network": ("VSPHERE_NETWORK", "GOVC_NETWORK"),
    "folder": ("VSPHERE_FOLDER", "GOVC_FOLDER"),
}
REQUIRED_TARGET_KEYS = ("datacenter", "datastore", "resource_pool", "network")


def default_guest_id(name: str) -> str:
    low = name.lower()
    for prefix, gid in _GUEST_PREFIXES:
        if low.startswith(prefix):
            return gid
    return DEFAULT_GUEST_ID


def infer_format(source: Path) -> Optional[SourceFormat]:
    return _EXT_FORMATS.get(source.suffix.lower())


def _usage(msg: str) -> Fatal:
    return Fatal(code=ExitCode.USAGE, msg=msg)


def _entries(raw: Any) -> List[Tuple[str, Dict[str, Any]]]:
    """Normalize mapping/list shapes into (name, fields) pairs, keeping declaration order."""
    out: List[Tuple[str, Dict[str, Any]]] = []
    if isinstance(raw, Mapping):
        for name, val in raw.items():
            if isinstance(val, (str, os.PathLike)):
                out.append((str(name), {"source": val}))
            elif isinstance(val, Mapping):
                out.append((str(name), dict(val)))
            else:
                raise _usage(f"template {name!r}: expected a source path or a mapping, got {type(val).__name__}")
        return out
    if isinstance(raw, list):
        for i, item in enumerate(raw):
            if not isinstance(item, Mapping):
                raise _usage(f"templates[{i}]: expected a mapping with a 'name' key")
            fields = dict(item)
            out.append((str(fields.pop("name", "") or ""), fields))
        return out
    raise _usage(f"templates: expected a mapping or a list, got {type(raw).__name__}")


def _positive_int(v: Any, field: str, name: str, errors: List[str]) -> Optional[int]:
    if isinstance(v, bool):
        errors.append(f"template {name!r}: {field} must be a positive integer")
        return None
    try:
        n = int(v)
    except (TypeError, ValueError):
        errors.append(f"template {name!r}: {field} must be a positive integer, got {v!r}")
        return None
    if n <= 0:
        errors.append(f"template {name!r}: {field} must be a positive integer, got {n}")
        return None
    return n


def _build_spec(name: str, fields: Dict[str, Any], files_dir: Path, errors: List[str]) -> Optional[TemplateSpec]:
    n_errors = len(errors)
    fields = {str(k).replace("-", "_"): v for k, v in fields.items()}

    unknown = sorted(set(fields) - _TEMPLATE_KEYS)
    if unknown:
        errors.append(f"template {name!r}: unknown keys {', '.join(unknown)}")

    src_raw = fields.get("source")
    if not src_raw or not str(src_raw).strip():
        errors.append(f"template {name!r}: missing 'source'")
        return None
    source = Path(str(src_raw)).expanduser()
    if not source.is_absolute():
        source = files_dir / source

    fmt_raw = fields.get("format")
    if fmt_raw:
        fmt = _FORMAT_ALIASES.get(str(fmt_raw).strip().lower())
        if fmt is None:
            errors.append(f"template {name!r}: unsupported format {fmt_raw!r} (ova, qcow2, raw)")
    else:
        fmt = infer_format(source)
        if fmt is None:
            errors.append(f"template {name!r}: cannot infer format from {source.name!r}; set 'format'")

    try:
        controller = DiskController(str(fields.get("disk_controller") or DiskController.PVSCSI.value).lower())
    except ValueError:
        errors.append(
            f"template {name!r}: unsupported disk_controller {fields.get('disk_controller')!r} "
            f"({', '.join(c.value for c in DiskController)})"
        )
        controller = DiskController.PVSCSI

    memory_mb = _positive_int(fields.get("memory_mb", 2048), "memory_mb", name, errors)
    cpus = _positive_int(fields.get("cpus", 2), "cpus", name, errors)

    if len(errors) != n_errors or fmt is None or memory_mb is None or cpus is None:
        return None

    return TemplateSpec(
        name=name,
        source=source,
        format=fmt,
        guest_id=str(fields.get("guest_id") or default_guest_id(name)),
        memory_mb=memory_mb,
        cpus=cpus,
        disk_controller=controller,
    )


def load_templates(raw: Any, *, files_dir: Optional[str] = None) -> Tuple[TemplateSpec, ...]:
    """
    Build the frozen template set, ordered by name.

    `raw` is the value of the `templates:` key; None selects DEFAULT_TEMPLATES.
    Raises Fatal(code=2) listing every invalid entry.
    """
    base = Path(files_dir or DEFAULT_FILES_DIR).expanduser()
    entries = _entries(DEFAULT_TEMPLATES if raw is None else raw)

    errors: List[str] = []
    seen: Dict[str, int] = {}
    specs: List[TemplateSpec] = []
    for name, fields in entries:
        name = name.strip()
        if not name:
            errors.append("template with empty name")
            continue
        seen[name] = seen.get(name, 0) + 1
        if seen[name] == 2:
            errors.append(f"duplicate template name {name!r}")
        if seen[name] > 1:
            continue
        spec = _build_spec(name, fields, base, errors)
        if spec is not None:
            specs.append(spec)

    # Work dirs and datastore dirs are keyed by safe_name(); two templates must never share one.
    dirs: Dict[str, str] = {}
    for spec in specs:
        d = safe_name(spec.name)
        if d in dirs:
            errors.append(f"templates {dirs[d]!r} and {spec.name!r} both map to staging directory {d!r}; rename one")
        else:
            dirs[d] = spec.name

    if errors:
        raise _usage("invalid template set: " + "; ".join(errors))
    if not specs:
        raise _usage("no templates declared")
    return tuple(sorted(specs, key=lambda s: s.name))


def load_target(values: Mapping[str, Any], env: Optional[Mapping[str, str]] = None) -> ClusterTarget:
    """
    Cluster target from config/CLI values, falling back to VSPHERE_* then GOVC_*
    environment variables. cluster and folder may be empty (datacenter-wide
    pool search, datacenter root VM folder).
    """
    env = os.environ if env is None else env
    resolved: Dict[str, str] = {}
    for key, env_names in TARGET_ENV.items():
        v = values.get(key)
        if v is None or not str(v).strip():
            v = next((env[e] for e in env_names if env.get(e, "").strip()), "")
        resolved[key] = str(v).strip()

    missing = [k for k in REQUIRED_TARGET_KEYS if not resolved[k]]
    if missing:
        hints = ", ".join(f"{k} (--{k.replace('_', '-')} / {TARGET_ENV[k][0]})" for k in missing)
        raise _usage(f"cluster target incomplete: missing {hints}")
    return ClusterTarget(**resolved)
