# SPDX-License-Identifier: LGPL-3.0-or-later
import logging
import os
import sys
from pathlib import Path

import pytest

_THIS_DIR = Path(__file__).resolve().parent
_REPO_ROOT = _THIS_DIR.parent

if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

os.environ.setdefault("PYTHONPATH", str(_REPO_ROOT))


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests with no external tools")
    config.addinivalue_line("markers", "security: path traversal / secret redaction checks")
    config.addinivalue_line("markers", "scenario: end-to-end reconciliation runs against the fake cluster")


@pytest.fixture
def logger():
    lg = logging.getLogger("prestage_test")
    lg.setLevel(logging.DEBUG)
    lg.propagate = True
    return lg


@pytest.fixture(autouse=True)
def _clean_govc_env(monkeypatch):
    # Developer shells often export GOVC_*/VSPHERE_*; tests must not see them.
    for k in list(os.environ):
        if k.startswith(("GOVC_", "VSPHERE_")):
            monkeypatch.delenv(k, raising=False)


@pytest.fixture
def target():
    from prestage.core.models import ClusterTarget

    return ClusterTarget(
        datacenter="DC1",
        cluster="Cluster1",
        datastore="ds1",
        resource_pool="Packer",
        network="VM Network",
        folder="Templates",
    )


@pytest.fixture
def cluster():
    from fakes.fake_cluster import FakeCluster

    return FakeCluster()


@pytest.fixture
def files_dir(tmp_path):
    """files/ with one OVA and one qcow2, matching the deb12/ub24 specs below."""
    from fakes.images import make_ova, make_qcow2

    d = tmp_path / "files"
    make_ova(d / "noble-server-cloudimg-amd64.ova")
    make_qcow2(d / "debian-12-genericcloud-amd64.qcow2")
    return d


@pytest.fixture
def specs(files_dir):
    from prestage.config.templates import load_templates

    return load_templates(
        {
            "debian-12-packer": "debian-12-genericcloud-amd64.qcow2",
            "ubuntu-24-packer": "noble-server-cloudimg-amd64.ova",
        },
        files_dir=str(files_dir),
    )


@pytest.fixture
def fake_converter(tmp_path):
    from fakes.fake_converter import FakeConverter

    return FakeConverter(tmp_path / "converted")
