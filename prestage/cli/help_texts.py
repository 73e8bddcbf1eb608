# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# prestage/cli/help_texts.py
from __future__ import annotations

# Pure help text for the argparse epilog; keep it copy/paste runnable.

YAML_EXAMPLE = r"""# prestage configuration (YAML)
#
# Run:
#   prestage --config prestage.yaml
#   prestage --config base.yaml --config lab.yaml --force
#
# CLI flags override YAML (two-phase parse: --config is read first and
# applied as argparse defaults, then the full command line is parsed).
#
# cmd: stage            # stage | plan | list-images | templates | test | clean
#
# vCenter connection (GOVC_* already in the environment win):
# vcenter: vcenter.lab.example.com
# vc_user: administrator@vsphere.local
# vc_password_env: VSPHERE_PASSWORD
# vc_insecure: true
# govc_timeout_s: 3600
#
# Cluster target (falls back to VSPHERE_* then GOVC_* env vars):
# datacenter: DC1
# cluster: Cluster1
# datastore: vsanDatastore
# resource_pool: Packer
# network: VM Network
# folder: Templates
#
# Behaviour:
# files_dir: ./files
# workdir: ./converted
# import_strategy: auto     # auto | direct | compose
# repair_policy: restage    # restage | mark  (existing plain VM with a template's name)
# retries: 3
# workers: 1                # templates staged in parallel
# convert_workers: 1        # simultaneous qemu-img conversions
# keep_artifacts: false
# report: ./prestage-report.json
#
# Declared templates (name -> source, relative to files_dir):
templates:
  ubuntu-22-packer: jammy-server-cloudimg-amd64.ova
  ubuntu-24-packer: noble-server-cloudimg-amd64.ova
  debian-12-packer:
    source: debian-12-genericcloud-amd64.qcow2
    guest_id: other5xLinuxGuest
    memory_mb: 2048
    cpus: 2
    disk_controller: pvscsi
"""

FEATURE_SUMMARY = r"""  • Idempotent: templates already in the catalog are skipped; re-runs are no-ops
  • OVA: direct import.ova as template (thin), falls back to compose when unsupported
  • qcow2/raw: qemu-img -> streamOptimized VMDK, VM shell + disk upload + attach
  • Half-built objects (plain VM with a template's name) are repaired, not skipped
  • Mark-as-template is verified; partial objects are cleaned up on failure
  • Transient govc errors retried with backoff; one bad image never stops the batch
"""

EXIT_CODES = r"""  0    every template staged or already present
  1    one or more templates failed (see summary / --report)
  2    usage or configuration error
  10   vCenter rejected credentials
  11   cluster target invalid (missing network / pool / datastore / folder)
  12   vCenter unreachable
  13   required tool missing (govc / qemu-img)
  130  interrupted
"""
