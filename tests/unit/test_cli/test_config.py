# SPDX-License-Identifier: LGPL-3.0-or-later
"""
Unit Tests for CLI Configuration Loading

Tests YAML/JSON configuration file loading, merging, and two-phase parsing.
"""

import json
import logging
import tempfile
import unittest
from pathlib import Path

import yaml

from prestage.cli.args import parse_args_with_config
from prestage.config.config_loader import Config
from prestage.core.exceptions import ExitCode, Fatal

LOGGER = logging.getLogger("prestage_test.config")

BASE_CONFIG = {
    "vcenter": "vc.example.com",
    "vc_user": "administrator@vsphere.local",
    "vc_password": "pw",
    "datacenter": "DC1",
    "datastore": "ds1",
    "resource-pool": "Packer",
    "network": "VM Network",
    "retries": 5,
    "templates": {"debian-12-packer": "debian-12-genericcloud-amd64.qcow2"},
}


class ConfigDirTestCase(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        self.addCleanup(self._td.cleanup)
        self.td = Path(self._td.name)

    def write_yaml(self, name, data):
        p = self.td / name
        p.write_text(yaml.safe_dump(data), encoding="utf-8")
        return p


class TestConfigLoader(ConfigDirTestCase):
    def test_load_yaml_normalizes_top_level_dashes(self):
        p = self.write_yaml("a.yaml", {"resource-pool": "Packer", "templates": {"debian-12-packer": "x.qcow2"}})
        conf = Config.load_one(LOGGER, str(p))
        self.assertEqual(conf["resource_pool"], "Packer")
        self.assertIn("debian-12-packer", conf["templates"])

    def test_load_json(self):
        p = self.td / "a.json"
        p.write_text(json.dumps({"datastore": "ds1"}), encoding="utf-8")
        self.assertEqual(Config.load_one(LOGGER, str(p)), {"datastore": "ds1"})

    def test_empty_yaml_is_empty_mapping(self):
        p = self.td / "empty.yaml"
        p.write_text("", encoding="utf-8")
        self.assertEqual(Config.load_one(LOGGER, str(p)), {})

    def test_errors_are_usage_errors(self):
        bad_yaml = self.td / "bad.yaml"
        bad_yaml.write_text("templates: [unclosed\n", encoding="utf-8")
        bad_json = self.td / "bad.json"
        bad_json.write_text("{nope", encoding="utf-8")
        not_a_map = self.write_yaml("list.yaml", ["a", "b"])

        for p in (bad_yaml, bad_json, not_a_map, self.td / "missing.yaml"):
            with self.subTest(path=p.name):
                with self.assertLogs(LOGGER, level="ERROR"):
                    with self.assertRaises(Fatal) as cm:
                        Config.load_one(LOGGER, str(p))
                self.assertEqual(cm.exception.code, ExitCode.USAGE)

    def test_merge_dicts_is_deep_for_mappings_only(self):
        merged = Config.merge_dicts(
            {"templates": {"a": "a.ova"}, "only": ["a"], "retries": 3},
            {"templates": {"b": "b.qcow2"}, "only": ["b"]},
        )
        self.assertEqual(merged["templates"], {"a": "a.ova", "b": "b.qcow2"})
        self.assertEqual(merged["only"], ["b"])
        self.assertEqual(merged["retries"], 3)

    def test_expand_configs(self):
        d = self.td / "conf.d"
        d.mkdir()
        (d / "20-target.yml").write_text("datastore: ds1\n")
        (d / "10-base.yaml").write_text("retries: 2\n")
        (d / "README.txt").write_text("ignored\n")
        globbed = self.td / "extra-1.yaml"
        globbed.write_text("workers: 2\n")

        out = Config.expand_configs(LOGGER, [str(d), str(self.td / "extra-*.yaml"), "plain.yaml"])

        self.assertEqual([Path(p).name for p in out], ["10-base.yaml", "20-target.yml", "extra-1.yaml", "plain.yaml"])

    def test_later_files_override_earlier(self):
        a = self.write_yaml("a.yaml", {"retries": 2, "datastore": "ds1"})
        b = self.write_yaml("b.yaml", {"retries": 4})
        conf = Config.load_many(LOGGER, [str(a), str(b)])
        self.assertEqual(conf, {"retries": 4, "datastore": "ds1"})


class TestCLIConfigTwoPhaseParse(ConfigDirTestCase):
    """Config files provide defaults; explicit flags win."""

    def test_yaml_values_become_defaults(self):
        cfg = self.write_yaml("cfg.yaml", BASE_CONFIG)

        args, conf, logger = parse_args_with_config(["--config", str(cfg)], logger=LOGGER)

        self.assertIs(logger, LOGGER)
        self.assertEqual(args.cmd, "stage")
        self.assertEqual(args.retries, 5)
        self.assertEqual(args.resource_pool, "Packer")
        self.assertEqual(args.templates, {"debian-12-packer": "debian-12-genericcloud-amd64.qcow2"})
        self.assertEqual(conf["vcenter"], "vc.example.com")

    def test_cli_overrides_yaml(self):
        cfg = self.write_yaml("cfg.yaml", BASE_CONFIG)
        args, _, _ = parse_args_with_config(
            ["--config", str(cfg), "--retries", "7", "--datastore", "ds2", "--cmd", "plan"], logger=LOGGER
        )
        self.assertEqual(args.retries, 7)
        self.assertEqual(args.datastore, "ds2")
        self.assertEqual(args.cmd, "plan")

    def test_cmd_from_yaml(self):
        cfg = self.write_yaml("cfg.yaml", dict(BASE_CONFIG, cmd="List-Images"))
        args, _, _ = parse_args_with_config(["--config", str(cfg)], logger=LOGGER)
        self.assertEqual(args.cmd, "list-images")

    def test_no_templates_key_means_none(self):
        cfg = self.write_yaml("cfg.yaml", {k: v for k, v in BASE_CONFIG.items() if k != "templates"})
        args, _, _ = parse_args_with_config(["--config", str(cfg)], logger=LOGGER)
        self.assertIsNone(args.templates)
