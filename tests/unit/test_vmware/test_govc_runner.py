# SPDX-License-Identifier: LGPL-3.0-or-later
"""govc execution: env seeding, error surfacing and the typed adapter calls."""
from __future__ import annotations

import json
import subprocess
from argparse import Namespace
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from fakes.fake_logger import FakeLogger
from prestage.core.exceptions import ClusterError, ImportNotSupported, ObjectExists
from prestage.vmware.transports.govc_common import GovcRunner, normalize_ds_path
from prestage.vmware.vsphere.errors import ErrorClass, classify
from prestage.vmware.vsphere.govc import GovmomiCLI

POPEN = "prestage.vmware.transports.govc_common.subprocess.Popen"


def make_args(**kw):
    base = dict(
        vcenter="vc.example.com",
        vc_user="administrator@vsphere.local",
        vc_password="s3cret-pass",
        vc_password_env=None,
        vc_insecure=False,
        datacenter="DC1",
        govc_bin="govc",
        govc_timeout_s=30.0,
    )
    base.update(kw)
    return Namespace(**base)


def proc(out: str = "", err: str = "", rc: int = 0) -> MagicMock:
    p = MagicMock()
    p.communicate.return_value = (out, err)
    p.returncode = rc
    return p


@pytest.mark.unit
class TestEnvSeeding:
    def test_seeds_missing_variables(self, monkeypatch):
        monkeypatch.setenv("VC_PASS", "from-env")
        runner = GovcRunner(logger=FakeLogger(), args=make_args(vc_password=None, vc_password_env="VC_PASS", vc_insecure=True))

        env = runner.env()

        assert env["GOVC_URL"] == "https://vc.example.com/sdk"
        assert env["GOVC_USERNAME"] == "administrator@vsphere.local"
        assert env["GOVC_PASSWORD"] == "from-env"
        assert env["GOVC_INSECURE"] == "1"
        assert env["GOVC_DATACENTER"] == "DC1"

    def test_full_url_kept(self):
        env = GovcRunner(logger=FakeLogger(), args=make_args(vcenter="https://vc:8443/sdk")).env()
        assert env["GOVC_URL"] == "https://vc:8443/sdk"

    def test_existing_environment_wins(self, monkeypatch):
        monkeypatch.setenv("GOVC_URL", "https://other/sdk")
        env = GovcRunner(logger=FakeLogger(), args=make_args()).env()
        assert env["GOVC_URL"] == "https://other/sdk"

    @pytest.mark.security
    def test_describe_env_masks_password(self):
        desc = GovcRunner(logger=FakeLogger(), args=make_args()).describe_env()
        assert "s3cret-pass" not in desc
        assert "GOVC_PASSWORD=s3***ss" in desc


@pytest.mark.unit
class TestRunText:
    def test_success_returns_stripped_stdout(self):
        runner = GovcRunner(logger=FakeLogger(), args=make_args())
        with patch(POPEN, return_value=proc(out="  /DC1/network/VM Network\n")) as popen:
            out = runner.run_text(["find", "/DC1/network", "-type", "n"])

        assert out == "/DC1/network/VM Network"
        argv = popen.call_args[0][0]
        assert argv[:2] == ["govc", "find"]
        assert popen.call_args[1]["env"]["GOVC_URL"] == "https://vc.example.com/sdk"

    def test_nonzero_exit_raises_cluster_error(self):
        runner = GovcRunner(logger=FakeLogger(), args=make_args())
        with patch(POPEN, return_value=proc(err="vm 'x' not found", rc=1)):
            with pytest.raises(ClusterError) as ei:
                runner.run_text(["vm.info", "x"])

        assert ei.value.returncode == 1
        assert ei.value.stderr == "vm 'x' not found"
        assert classify(ei.value) is ErrorClass.NOT_FOUND

    def test_usage_blob_is_an_error_even_with_rc_zero(self):
        runner = GovcRunner(logger=FakeLogger(), args=make_args())
        with patch(POPEN, return_value=proc(out="Usage: govc <COMMAND> [COMMON OPTIONS]")):
            with pytest.raises(ClusterError, match="usage/help"):
                runner.run_text(["vm.bogus"])

    def test_timeout_kills_child_and_is_transient(self):
        runner = GovcRunner(logger=FakeLogger(), args=make_args())
        p = proc()
        p.communicate.side_effect = [subprocess.TimeoutExpired("govc", 30), ("", "")]
        with patch(POPEN, return_value=p):
            with pytest.raises(ClusterError) as ei:
                runner.run_text(["import.vmdk", "disk.vmdk"])

        p.kill.assert_called_once()
        assert classify(ei.value) is ErrorClass.TRANSIENT

    def test_interrupt_terminates_child(self):
        runner = GovcRunner(logger=FakeLogger(), args=make_args())
        p = proc()
        p.communicate.side_effect = KeyboardInterrupt
        with patch(POPEN, return_value=p):
            with pytest.raises(KeyboardInterrupt):
                runner.run_text(["import.ova", "x.ova"])
        p.terminate.assert_called_once()

    def test_missing_binary(self):
        runner = GovcRunner(logger=FakeLogger(), args=make_args(govc_bin="/nope/govc"))
        with patch(POPEN, side_effect=FileNotFoundError(2, "No such file")):
            with pytest.raises(ClusterError) as ei:
                runner.run_text(["about"])
        assert classify(ei.value) is ErrorClass.TOOL_MISSING

    def test_run_json(self):
        runner = GovcRunner(logger=FakeLogger(), args=make_args())
        with patch(POPEN, return_value=proc(out='{"about": {"fullName": "vCenter 8"}}')):
            assert runner.run_json(["about", "-json"]) == {"about": {"fullName": "vCenter 8"}}
        with patch(POPEN, return_value=proc(out="")):
            assert runner.run_json(["about", "-json"]) is None
        with patch(POPEN, return_value=proc(out="not json")):
            with pytest.raises(ClusterError, match="non-JSON"):
                runner.run_json(["about", "-json"])


@pytest.mark.unit
class TestDatastorePaths:
    def test_normalize(self):
        assert normalize_ds_path("ds1", "[ds2] deb12/deb12.vmdk") == ("ds2", "deb12/deb12.vmdk")
        assert normalize_ds_path("ds1", "/deb12") == ("ds1", "deb12")

    def test_empty_path_rejected(self):
        with pytest.raises(ClusterError):
            normalize_ds_path("ds1", "  ")


@pytest.mark.unit
class TestGovmomiCLI:
    def make_cli(self):
        return GovmomiCLI(make_args(), FakeLogger())

    def test_find_with_name(self):
        cli = self.make_cli()
        with patch(POPEN, return_value=proc(out="/DC1/vm/Templates/a\n\n/DC1/vm/b\n")) as popen:
            hits = cli.find("/DC1/vm", "m", "a")
        assert hits == ["/DC1/vm/Templates/a", "/DC1/vm/b"]
        assert popen.call_args[0][0] == ["govc", "find", "/DC1/vm", "-type", "m", "-name", "a"]

    def test_vm_is_template(self):
        cli = self.make_cli()
        info = {"virtualMachines": [{"config": {"template": True}}]}
        with patch(POPEN, return_value=proc(out=json.dumps(info))):
            assert cli.vm_is_template("/DC1/vm/a") is True
        info = {"VirtualMachines": [{"Config": {"Template": False}}]}
        with patch(POPEN, return_value=proc(out=json.dumps(info))):
            assert cli.vm_is_template("/DC1/vm/a") is False

    def test_vm_is_template_without_config_reads_as_not_found(self):
        cli = self.make_cli()
        with patch(POPEN, return_value=proc(out='{"virtualMachines": null}')):
            with pytest.raises(ClusterError) as ei:
                cli.vm_is_template("/DC1/vm/gone")
        assert classify(ei.value) is ErrorClass.NOT_FOUND

    def test_import_ova_writes_options_and_cleans_up(self, tmp_path):
        cli = self.make_cli()
        seen = {}

        def fake_popen(argv, **kw):
            opt = Path(argv[argv.index("-options") + 1])
            seen["path"] = opt
            seen["options"] = json.loads(opt.read_text())
            return proc()

        options = {"DiskProvisioning": "thin", "MarkAsTemplate": True}
        with patch(POPEN, side_effect=fake_popen):
            cli.import_ova(tmp_path / "noble.ova", name="ubuntu-24-packer", datastore="ds1",
                           pool="/DC1/host/C/Resources/P", folder="/DC1/vm/T", options=options)

        assert seen["options"] == options
        assert not seen["path"].exists()

    def test_import_ova_raises_typed_errors(self, tmp_path):
        cli = self.make_cli()
        kw = dict(name="u", datastore="ds1", pool="/p", folder="/f", options={})
        with patch(POPEN, return_value=proc(err="The name 'u' already exists.", rc=1)):
            with pytest.raises(ObjectExists):
                cli.import_ova(tmp_path / "u.ova", **kw)
        with patch(POPEN, return_value=proc(err="Failed to parse OVF descriptor", rc=1)):
            with pytest.raises(ImportNotSupported) as ei:
                cli.import_ova(tmp_path / "u.ova", **kw)
        assert ei.value.returncode == 1

    def test_create_vm_argv(self):
        cli = self.make_cli()
        with patch(POPEN, return_value=proc()) as popen:
            cli.create_vm("debian-12-packer", memory_mb=2048, cpus=2, guest_id="other5xLinuxGuest",
                          network="VM Network", datastore="ds1", pool="/p", folder="/f")
        argv = popen.call_args[0][0]
        assert argv[1:3] == ["vm.create", "-on=false"]
        assert argv[-1] == "debian-12-packer"
        assert argv[argv.index("-g") + 1] == "other5xLinuxGuest"

    def test_scsi_and_disk_helpers(self, tmp_path):
        cli = self.make_cli()
        with patch(POPEN, return_value=proc(out="pvscsi-1000")):
            assert cli.add_scsi_controller("/f/vm", "pvscsi") == "pvscsi-1000"
        with patch(POPEN, return_value=proc()) as popen:
            disk = cli.import_vmdk(tmp_path / "deb.vmdk", datastore="ds1", pool="/p", ds_dir="[ds1] deb/")
        assert disk == "deb/deb.vmdk"
        assert popen.call_args[0][0][-2:] == [str(tmp_path / "deb.vmdk"), "deb"]

    def test_datastore_rm(self):
        cli = self.make_cli()
        with patch(POPEN, return_value=proc()) as popen:
            cli.datastore_rm("ds1", "[ds2] deb12")
        assert popen.call_args[0][0] == ["govc", "datastore.rm", "-ds", "ds2", "-f", "deb12"]
