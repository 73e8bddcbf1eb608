# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# prestage/cli/args/parser.py
from __future__ import annotations

import argparse
import sys
from typing import Any, Dict, Optional, Sequence, Tuple

from ...config.config_loader import Config
from ...core.logger import Log, c
from ...core.utils import U
from .builder import HelpFormatter, build_epilog
from .groups import (
    _add_cluster_target,
    _add_global_config_logging,
    _add_global_operation_flags,
    _add_project_control,
    _add_staging_policy,
    _add_vsphere_core_knobs,
)
from .helpers import merged_cmd
from .validators import validate_args


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="prestage",
        description=c("prestage: stage OVA / qcow2 / raw images as vSphere templates", "green", ["bold"]),
        formatter_class=HelpFormatter,
        epilog=build_epilog(),
    )

    _add_global_config_logging(p)
    _add_project_control(p)
    _add_global_operation_flags(p)
    _add_staging_policy(p)
    _add_vsphere_core_knobs(p)
    _add_cluster_target(p)

    return p


def _build_preparser() -> argparse.ArgumentParser:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", action="append", default=[])
    pre.add_argument("-v", "--verbose", action="count", default=0)
    pre.add_argument("-q", "--quiet", action="count", default=0)
    pre.add_argument("--log-file", dest="log_file", default=None)
    pre.add_argument("--json-logs", dest="json_logs", action="store_true")
    pre.add_argument("--no-color", dest="color", action="store_false")
    pre.add_argument("--dump-config", action="store_true")
    pre.add_argument("--dump-args", action="store_true")
    return pre


def _load_merged_config(logger: Any, cfgs: Sequence[str]) -> Dict[str, Any]:
    if not cfgs:
        return {}
    expanded = Config.expand_configs(logger, list(cfgs))
    return Config.load_many(logger, expanded)


def parse_args_with_config(
    argv: Optional[Sequence[str]] = None,
    logger: Any = None,
) -> Tuple[argparse.Namespace, Dict[str, Any], Any]:
    """
    Flow:
      Phase 0: parse ONLY global flags needed to locate config/logging
      Phase 1: load+merge config files
      Phase 2: apply config as defaults onto the parser
      Phase 3: full parse to get final args
      Phase 4: validate using merged config + args
      Phase 5: attach the declared template set (YAML-only) and the resolved cmd
    """
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)

    parser = build_parser()

    pre = _build_preparser()
    args0, _rest = pre.parse_known_args(argv)

    if logger is None:
        logger = Log.setup(
            args0.verbose,
            args0.log_file,
            quiet=args0.quiet,
            color=args0.color,
            json_logs=args0.json_logs,
        )

    conf = _load_merged_config(logger, args0.config or [])

    if args0.dump_config:
        print(U.json_dump(conf))
        raise SystemExit(0)

    # Apply config as defaults so CLI can override.
    Config.apply_as_defaults(logger, parser, conf)

    args = parser.parse_args(argv)

    if args0.dump_args:
        print(U.json_dump(vars(args)))
        raise SystemExit(0)

    validate_args(args, conf)

    args.cmd = merged_cmd(args, conf)
    args.templates = conf.get("templates")

    # Log.setup ran before the YAML was read; honour logging keys that only came from config.
    if conf and any(k in conf for k in ("verbose", "log_file", "json_logs", "quiet")):
        logger = Log.setup(
            int(args.verbose or 0),
            args.log_file,
            quiet=int(args.quiet or 0),
            color=args.color,
            json_logs=bool(args.json_logs),
        )

    return args, conf, logger
