# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# prestage/cli/args/groups.py
from __future__ import annotations

import argparse

from ...orchestrator.stager import ImportStrategy, RepairPolicy

COMMANDS = ("stage", "plan", "list-images", "templates", "test", "clean")


def _add_global_config_logging(p: argparse.ArgumentParser) -> None:
    # ------------------------------------------------------------------
    # Global config/logging (two-phase parse relies on these)
    # ------------------------------------------------------------------
    from ... import __version__

    p.add_argument(
        "--config",
        action="append",
        default=[],
        help="YAML/JSON config file, directory or glob (repeatable; later overrides earlier).",
    )
    p.add_argument("--dump-config", action="store_true", help="Print merged normalized config and exit.")
    p.add_argument("--dump-args", action="store_true", help="Print final parsed args and exit.")
    p.add_argument("--version", action="version", version=__version__)
    p.add_argument("-v", "--verbose", action="count", default=0, help="Verbosity: -v, -vv, -vvv (trace)")
    p.add_argument("-q", "--quiet", action="count", default=0, help="Less output: -q warnings, -qq errors only")
    p.add_argument("--log-file", dest="log_file", default=None, help="Write logs to file.")
    p.add_argument("--json-logs", dest="json_logs", action="store_true", help="Emit NDJSON log lines on stderr.")
    p.add_argument("--no-color", dest="color", action="store_false", help="Disable coloured log output.")
    p.set_defaults(color=True)


def _add_project_control(p: argparse.ArgumentParser) -> None:
    # ------------------------------------------------------------------
    # Project control: YAML-driven operation (no subcommands)
    # ------------------------------------------------------------------
    p.add_argument(
        "--cmd",
        dest="cmd",
        default=None,
        choices=COMMANDS,
        help="Operation (normally from YAML `cmd:`; default: stage).",
    )


def _add_global_operation_flags(p: argparse.ArgumentParser) -> None:
    # ------------------------------------------------------------------
    # Global operation flags
    # ------------------------------------------------------------------
    p.add_argument("--files-dir", dest="files_dir", default="./files", help="Directory relative template sources resolve against.")
    p.add_argument("--workdir", default="./converted", help="Working directory for converted disk images.")
    p.add_argument("--dry-run", dest="dry_run", action="store_true", help="Check cluster state and preconditions; change nothing.")
    p.add_argument("--report", dest="report", default=None, help="Write a JSON run report to this path.")
    p.add_argument("--only", dest="only", action="append", default=[], help="Stage only this template name (repeatable).")


def _add_staging_policy(p: argparse.ArgumentParser) -> None:
    # ------------------------------------------------------------------
    # Staging policy
    # ------------------------------------------------------------------
    p.add_argument("--force", action="store_true", help="Replace templates that already exist (re-convert and re-import).")
    p.add_argument(
        "--import-strategy",
        dest="import_strategy",
        default=ImportStrategy.AUTO.value,
        choices=[s.value for s in ImportStrategy],
        help="auto: OVA via import.ova, falling back to compose; direct: import only; compose: always build VM + disk.",
    )
    p.add_argument(
        "--repair-policy",
        dest="repair_policy",
        default=RepairPolicy.RESTAGE.value,
        choices=[r.value for r in RepairPolicy],
        help="What to do with a plain VM that carries a template's name: destroy and restage, or mark it in place.",
    )
    p.add_argument("--retries", type=int, default=3, help="Attempts for transient cluster errors.")
    p.add_argument("--workers", type=int, default=1, help="Templates staged in parallel.")
    p.add_argument("--convert-workers", dest="convert_workers", type=int, default=1, help="Simultaneous qemu-img conversions.")
    p.add_argument("--keep-artifacts", dest="keep_artifacts", action="store_true", help="Keep converted VMDKs after a successful stage.")
    p.add_argument("--qemu-img", dest="qemu_img", default="qemu-img", help="qemu-img binary.")


def _add_vsphere_core_knobs(p: argparse.ArgumentParser) -> None:
    # ------------------------------------------------------------------
    # vSphere / vCenter connection (seeds GOVC_* when not already set)
    # ------------------------------------------------------------------
    p.add_argument("--vcenter", default=None, help="vCenter hostname or URL (GOVC_URL)")
    p.add_argument("--vc-user", dest="vc_user", default=None, help="vCenter username (GOVC_USERNAME)")
    p.add_argument("--vc-password", dest="vc_password", default=None, help="vCenter password (or use --vc-password-env)")
    p.add_argument("--vc-password-env", dest="vc_password_env", default=None, help="Env var containing vCenter password")
    p.add_argument("--vc-insecure", dest="vc_insecure", action="store_true", help="Disable TLS verification (GOVC_INSECURE=1)")
    p.add_argument("--govc-bin", dest="govc_bin", default=None, help="govc binary (default: $GOVC_BIN or govc)")
    p.add_argument("--govc-timeout-s", dest="govc_timeout_s", type=float, default=3600.0, help="Per-call govc timeout in seconds.")


def _add_cluster_target(p: argparse.ArgumentParser) -> None:
    # ------------------------------------------------------------------
    # Cluster target (empty -> VSPHERE_* then GOVC_* environment)
    # ------------------------------------------------------------------
    p.add_argument("--datacenter", default=None, help="Datacenter name")
    p.add_argument("--cluster", default=None, help="Cluster name (scopes the resource pool lookup)")
    p.add_argument("--datastore", default=None, help="Datastore for templates and uploaded disks")
    p.add_argument("--resource-pool", dest="resource_pool", default=None, help="Resource pool name or inventory path")
    p.add_argument("--network", default=None, help="Port group templates are connected to")
    p.add_argument("--folder", default=None, help="VM folder for templates (empty: datacenter root)")
