# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# prestage/__main__.py
from __future__ import annotations

import signal
import sys
import traceback
from typing import Any, Optional, Sequence

from .cli.args import parse_args_with_config
from .core.exceptions import Fatal, format_exception_for_cli
from .orchestrator.orchestrator import Orchestrator
from .vmware.vsphere.errors import classify_exit_code


def _print_stderr(msg: str) -> None:
    print(msg, file=sys.stderr)


def _safe_log(logger: Any, level: str, msg: str) -> None:
    """
    Best-effort logging without assuming logger exists or has a given method.
    """
    if logger is None:
        _print_stderr(msg)
        return

    fn = getattr(logger, level, None)
    if callable(fn):
        fn(msg)
    else:
        _print_stderr(msg)


def _sigterm_as_interrupt(_signum: int, _frame: Any) -> None:
    # Child processes (govc, qemu-img) are reaped on KeyboardInterrupt.
    raise KeyboardInterrupt


def main(argv: Optional[Sequence[str]] = None) -> None:
    logger: Optional[Any] = None
    signal.signal(signal.SIGTERM, _sigterm_as_interrupt)

    # Phase 1: parse (Fatal can happen here)
    try:
        args, _conf, logger = parse_args_with_config(argv)
    except Fatal as e:
        _safe_log(logger, "error", f"💥 ERROR    {e}")
        raise SystemExit(e.code)
    except KeyboardInterrupt:
        _safe_log(logger, "warning", "Interrupted by user (Ctrl+C).")
        raise SystemExit(130)

    verbose = int(getattr(args, "verbose", 0) or 0)

    # Phase 2: run
    try:
        rc = Orchestrator(logger, args).run()
    except Fatal as e:
        _safe_log(logger, "error", format_exception_for_cli(e, verbose=verbose))
        rc = int(classify_exit_code(e))
    except KeyboardInterrupt:
        _safe_log(logger, "warning", "Interrupted; partially created objects are repaired on the next run.")
        rc = 130
    except Exception as e:
        _safe_log(logger, "error", f"💥 UNHANDLED {type(e).__name__}: {e}")
        _safe_log(logger, "debug", traceback.format_exc())
        rc = int(classify_exit_code(e))

    raise SystemExit(rc)


if __name__ == "__main__":
    main()
