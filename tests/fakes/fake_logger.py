# SPDX-License-Identifier: LGPL-3.0-or-later
class FakeLogger:
    """Records (level, message) pairs; enough of logging.Logger for the govc runner."""

    def __init__(self):
        self.records = []

    def _log(self, level, msg, *a):
        self.records.append((level, str(msg) % a if a else str(msg)))

    def info(self, msg, *a, **k): self._log("info", msg, *a)
    def warning(self, msg, *a, **k): self._log("warning", msg, *a)
    def error(self, msg, *a, **k): self._log("error", msg, *a)
    def debug(self, msg, *a, **k): self._log("debug", msg, *a)

    def messages(self, level):
        return [m for lv, m in self.records if lv == level]

    def isEnabledFor(self, _lvl):
        return False
