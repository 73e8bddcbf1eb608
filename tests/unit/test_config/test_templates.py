# SPDX-License-Identifier: LGPL-3.0-or-later
"""Declared template set and cluster target loading."""
from __future__ import annotations

from pathlib import Path

import pytest

from prestage.config.templates import (
    DEFAULT_TEMPLATES,
    default_guest_id,
    infer_format,
    load_target,
    load_templates,
)
from prestage.core.exceptions import ExitCode, Fatal
from prestage.core.models import DiskController, SourceFormat

FULL_TARGET = {
    "datacenter": "DC1",
    "cluster": "Cluster1",
    "datastore": "ds1",
    "resource_pool": "Packer",
    "network": "VM Network",
    "folder": "Templates",
}


@pytest.mark.unit
class TestLoadTemplates:
    def test_defaults_when_nothing_declared(self):
        specs = load_templates(None, files_dir="/srv/files")

        assert [s.name for s in specs] == sorted(DEFAULT_TEMPLATES)
        deb = specs[0]
        assert deb.name == "debian-12-packer"
        assert deb.source == Path("/srv/files/debian-12-genericcloud-amd64.qcow2")
        assert deb.format is SourceFormat.QCOW2
        assert deb.guest_id == "other5xLinuxGuest"
        assert deb.memory_mb == 2048 and deb.cpus == 2
        assert deb.disk_controller is DiskController.PVSCSI

    def test_mapping_with_overrides(self):
        specs = load_templates(
            {
                "ubuntu-24-packer": "noble.ova",
                "debian-13-packer": {
                    "source": "/images/d13.img",
                    "memory-mb": 4096,
                    "cpus": 4,
                    "guest_id": "debian12_64Guest",
                    "disk_controller": "LSILogic",
                },
            },
            files_dir="files",
        )
        d13, ub = specs
        assert d13.source == Path("/images/d13.img")
        assert d13.format is SourceFormat.RAW
        assert d13.memory_mb == 4096 and d13.cpus == 4
        assert d13.guest_id == "debian12_64Guest"
        assert d13.disk_controller is DiskController.LSILOGIC
        assert ub.source == Path("files/noble.ova")
        assert ub.guest_id == "ubuntu64Guest"

    def test_list_form_with_explicit_format(self):
        specs = load_templates([{"name": "custom", "source": "disk.bin", "format": "qcow2"}], files_dir="f")
        assert specs[0].format is SourceFormat.QCOW2
        assert specs[0].guest_id == "otherLinux64Guest"

    def test_every_problem_is_reported_at_once(self):
        with pytest.raises(Fatal) as ei:
            load_templates(
                [
                    {"name": "a", "source": "x.vhd"},
                    {"name": "b"},
                    {"name": "c", "source": "c.qcow2", "cpus": 0, "colour": "red"},
                    {"name": "a", "source": "a.qcow2"},
                    {"name": "", "source": "e.qcow2"},
                ]
            )
        err = ei.value
        assert err.code == ExitCode.USAGE
        for needle in (
            "cannot infer format from 'x.vhd'",
            "template 'b': missing 'source'",
            "cpus must be a positive integer, got 0",
            "unknown keys colour",
            "duplicate template name 'a'",
            "template with empty name",
        ):
            assert needle in err.msg

    def test_names_sharing_a_staging_directory_are_rejected(self):
        with pytest.raises(Fatal) as ei:
            load_templates({"deb 12": "a.qcow2", "deb_12": "b.qcow2"})
        assert ei.value.code == ExitCode.USAGE
        assert "'deb 12' and 'deb_12' both map to staging directory 'deb_12'" in ei.value.msg

    def test_distinct_staging_directories_are_accepted(self):
        specs = load_templates({"deb-12": "a.qcow2", "deb_12": "b.qcow2", "deb.12": "c.qcow2"})
        assert len(specs) == 3

    @pytest.mark.parametrize(
        "raw, needle",
        [
            ({}, "no templates declared"),
            ("ubuntu.ova", "expected a mapping or a list"),
            ({"a": 3}, "expected a source path or a mapping"),
            ([["a"]], "expected a mapping with a 'name' key"),
            ({"a": {"source": "a.qcow2", "format": "vhdx"}}, "unsupported format 'vhdx'"),
            ({"a": {"source": "a.qcow2", "disk_controller": "nvme"}}, "unsupported disk_controller 'nvme'"),
            ({"a": {"source": "a.qcow2", "memory_mb": True}}, "memory_mb must be a positive integer"),
        ],
    )
    def test_invalid_sets(self, raw, needle):
        with pytest.raises(Fatal, match=needle) as ei:
            load_templates(raw)
        assert ei.value.code == ExitCode.USAGE


@pytest.mark.unit
class TestHelpers:
    @pytest.mark.parametrize(
        "name, fmt",
        [
            ("a.ova", SourceFormat.OVA),
            ("A.QCOW2", SourceFormat.QCOW2),
            ("a.img", SourceFormat.RAW),
            ("a.raw", SourceFormat.RAW),
            ("a.vmdk", None),
        ],
    )
    def test_infer_format(self, name, fmt):
        assert infer_format(Path(name)) is fmt

    def test_default_guest_id(self):
        assert default_guest_id("Ubuntu-22-packer") == "ubuntu64Guest"
        assert default_guest_id("debian-13-packer") == "other5xLinuxGuest"
        assert default_guest_id("rocky-9") == "otherLinux64Guest"

    def test_qemu_format(self):
        assert SourceFormat.OVA.qemu_format == "vmdk"
        assert SourceFormat.RAW.qemu_format == "raw"


@pytest.mark.unit
class TestLoadTarget:
    def test_values_win(self):
        t = load_target(FULL_TARGET, env={"VSPHERE_DATASTORE": "other"})
        assert t.datastore == "ds1"
        assert t.dc_root == "/DC1"

    def test_environment_fallback_order(self):
        env = {
            "VSPHERE_DATACENTER": "DC-env",
            "GOVC_DATACENTER": "DC-govc",
            "GOVC_DATASTORE": "ds-govc",
            "VSPHERE_RESOURCE_POOL": "pool-env",
            "GOVC_NETWORK": "net-govc",
        }
        t = load_target({"datacenter": None, "datastore": "  "}, env=env)
        assert (t.datacenter, t.datastore, t.resource_pool, t.network) == ("DC-env", "ds-govc", "pool-env", "net-govc")
        assert t.cluster == "" and t.folder == ""

    def test_missing_required_keys(self):
        with pytest.raises(Fatal) as ei:
            load_target({"datacenter": "DC1"}, env={})
        assert ei.value.code == ExitCode.USAGE
        assert "--resource-pool / VSPHERE_RESOURCE_POOL" in ei.value.msg
        assert "datacenter" not in ei.value.msg.split("missing", 1)[1]
