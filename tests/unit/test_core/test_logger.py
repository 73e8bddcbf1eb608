# SPDX-License-Identifier: LGPL-3.0-or-later
import json
import logging

import pytest

from prestage.core.logger import TRACE, ConsoleFormatter, Log, LogStyle, NdjsonFormatter


def _record(msg, *, level=logging.INFO, ctx=None):
    rec = logging.LogRecord("prestage", level, __file__, 10, msg, (), None)
    if ctx is not None:
        rec.ctx = ctx
    return rec


@pytest.mark.unit
class TestFormatters:
    def test_console_tags_template(self):
        fmt = ConsoleFormatter(LogStyle(color=False, unicode=False))
        line = fmt.format(_record("Uploading disk", ctx={"template": "debian-12-packer", "step": "upload"}))
        assert "[debian-12-packer] Uploading disk step=upload" in line
        assert " INFO " in line

    def test_console_without_context(self):
        line = ConsoleFormatter(LogStyle(color=False)).format(_record("hello"))
        assert line.endswith(" hello")
        assert "[" not in line

    def test_ndjson_promotes_template(self):
        obj = json.loads(NdjsonFormatter().format(_record("Staged", ctx={"template": "ubuntu-24-packer", "state": "staged"})))
        assert obj["template"] == "ubuntu-24-packer"
        assert obj["ctx"] == {"state": "staged"}
        assert obj["level"] == "INFO"
        assert obj["msg"] == "Staged"


@pytest.mark.unit
class TestLogApi:
    @pytest.mark.parametrize(
        "verbose, quiet, level",
        [(0, 0, logging.INFO), (2, 0, logging.DEBUG), (3, 0, TRACE), (3, 1, logging.WARNING), (0, 2, logging.ERROR)],
    )
    def test_level_from_flags(self, verbose, quiet, level):
        assert Log._level_from_flags(verbose, quiet) == level

    def test_bind_layers_context(self, logger, caplog):
        log = Log.bind(Log.bind(logger, template="debian-12-packer"), state="uploading")
        with caplog.at_level(logging.INFO, logger="prestage_test"):
            log.info("step", extra={"ctx": {"attempt": 2}})
        assert caplog.records[-1].ctx == {"template": "debian-12-packer", "state": "uploading", "attempt": 2}

    def test_warn_once(self, logger, caplog):
        with caplog.at_level(logging.WARNING, logger="prestage_test"):
            assert Log.warn_once(logger, ("ambiguous", "pool", "Packer-test-once"), "two pools") is True
            assert Log.warn_once(logger, ("ambiguous", "pool", "Packer-test-once"), "two pools") is False
        assert caplog.text.count("two pools") == 1

    def test_setup_replaces_handlers(self, tmp_path):
        lg = Log.setup(0, str(tmp_path / "logs" / "run.log"), logger_name="prestage_setup_test")
        lg = Log.setup(2, None, logger_name="prestage_setup_test")
        assert len(lg.handlers) == 1
        assert lg.level == logging.DEBUG
        assert lg.propagate is False
