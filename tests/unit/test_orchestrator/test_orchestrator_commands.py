# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import argparse
import json
from unittest.mock import patch

import pytest

from prestage.core.exceptions import ExitCode, Fatal
from prestage.orchestrator.orchestrator import Orchestrator
from prestage.orchestrator.stager import ImportStrategy, RepairPolicy

TEMPLATES = {
    "debian-12-packer": "debian-12-genericcloud-amd64.qcow2",
    "ubuntu-24-packer": "noble-server-cloudimg-amd64.ova",
}


@pytest.fixture
def make_args(tmp_path, files_dir):
    def _make(**overrides):
        values = dict(
            cmd="stage",
            templates=dict(TEMPLATES),
            files_dir=str(files_dir),
            workdir=str(tmp_path / "converted"),
            only=None,
            datacenter="DC1",
            cluster="Cluster1",
            datastore="ds1",
            resource_pool="Packer",
            network="VM Network",
            folder="Templates",
            import_strategy="auto",
            repair_policy="restage",
            force=False,
            dry_run=False,
            retries=3,
            keep_artifacts=False,
            workers=1,
            convert_workers=1,
            report=None,
            json_logs=False,
        )
        values.update(overrides)
        return argparse.Namespace(**values)

    return _make


@pytest.fixture
def use_fake_converter(fake_converter):
    with patch.object(Orchestrator, "converter", lambda self, *, show_progress: fake_converter):
        yield fake_converter


@pytest.mark.unit
class TestBuildingBlocks:
    def test_options_from_args(self, logger, make_args):
        opts = Orchestrator(logger, make_args(import_strategy="compose", repair_policy="mark", force=True, retries=5)).options()
        assert opts.import_strategy is ImportStrategy.COMPOSE
        assert opts.repair_policy is RepairPolicy.MARK
        assert opts.force and opts.retries == 5 and not opts.dry_run

    def test_plan_implies_dry_run(self, logger, make_args):
        assert Orchestrator(logger, make_args(cmd="plan")).options().dry_run is True

    def test_only_filter(self, logger, make_args):
        specs = Orchestrator(logger, make_args(only=["ubuntu-24-packer"])).specs()
        assert [s.name for s in specs] == ["ubuntu-24-packer"]

    def test_only_unknown_name_is_usage(self, logger, make_args):
        with pytest.raises(Fatal) as ei:
            Orchestrator(logger, make_args(only=["rocky-9-packer"])).specs()
        assert ei.value.code == ExitCode.USAGE
        assert "rocky-9-packer" in ei.value.msg

    def test_missing_govc_is_tool_missing(self, logger, make_args):
        with patch("prestage.orchestrator.orchestrator.GovmomiCLI.available", return_value=False):
            with pytest.raises(Fatal) as ei:
                Orchestrator(logger, make_args()).cli()
        assert ei.value.code == ExitCode.TOOL_MISSING

    def test_unknown_command(self, logger, make_args):
        with pytest.raises(Fatal) as ei:
            Orchestrator(logger, make_args(cmd="deploy")).run()
        assert ei.value.code == ExitCode.USAGE


@pytest.mark.unit
class TestCommands:
    def test_stage_then_rerun_is_noop(self, logger, make_args, cluster, use_fake_converter, tmp_path):
        report_path = tmp_path / "out" / "report.json"
        args = make_args(report=str(report_path))

        assert Orchestrator(logger, args, cli=cluster).run() == ExitCode.OK
        assert cluster.templates() == ["debian-12-packer", "ubuntu-24-packer"]

        data = json.loads(report_path.read_text())
        assert data["ok"] is True
        assert data["staged"] == 2 and data["skipped"] == 0
        assert [r["name"] for r in data["results"]] == ["debian-12-packer", "ubuntu-24-packer"]

        before = len(use_fake_converter.converted)
        assert Orchestrator(logger, args, cli=cluster).run() == ExitCode.OK
        assert len(use_fake_converter.converted) == before
        assert json.loads(report_path.read_text())["skipped"] == 2

    def test_failed_template_sets_exit_code(self, logger, make_args, cluster, use_fake_converter):
        use_fake_converter.break_image("debian-12-packer")
        assert Orchestrator(logger, make_args(), cli=cluster).run() == ExitCode.FAILED
        assert cluster.templates() == ["ubuntu-24-packer"]

    def test_plan_changes_nothing(self, logger, make_args, cluster, use_fake_converter):
        assert Orchestrator(logger, make_args(cmd="plan"), cli=cluster).run() == ExitCode.OK
        assert cluster.templates() == []
        assert use_fake_converter.converted == []

    def test_list_images_needs_no_cluster(self, logger, make_args):
        with patch("prestage.modes.inventory_mode.Console"):
            assert Orchestrator(logger, make_args(cmd="list-images")).run() == ExitCode.OK

    def test_clean_resets_workdir(self, logger, make_args, tmp_path):
        wd = tmp_path / "converted"
        (wd / "debian-12-packer").mkdir(parents=True)
        (wd / "debian-12-packer" / "debian-12-packer.vmdk").write_bytes(b"x")

        assert Orchestrator(logger, make_args(cmd="clean")).run() == ExitCode.OK
        assert wd.is_dir()
        assert list(wd.iterdir()) == []

    def test_test_command_against_cluster(self, logger, make_args, cluster):
        with patch("prestage.modes.inventory_mode.Console"):
            assert Orchestrator(logger, make_args(cmd="test"), cli=cluster).run() == ExitCode.OK
