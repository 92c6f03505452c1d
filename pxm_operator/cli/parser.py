# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pxm_operator/cli/parser.py
from __future__ import annotations

import argparse
import sys
from typing import Any, Dict, Optional, Sequence, Tuple

from ..config.config_loader import Config
from ..core.exceptions import Fatal, redact_secrets
from ..core.logger import Log, c
from ..core.utils import U
from ..qmp.dirty_rate import WAIT_POLICIES
from .groups import (
    COMMANDS,
    _add_global_config_logging,
    _add_planning_knobs,
    _add_project_control,
    _add_proxmox_knobs,
    _add_qmp_knobs,
    _add_vm_selection,
)
from .helpers import _merged_get, _merged_secret, _merged_url, _require, ENV_PROXMOX_TOKEN

_EPILOG = """\
YAML example:

  cmd: plan
  proxmox_url: https://pve1.example.com:8006
  proxmox_token_env: PVE_TOKEN
  memory_threshold: 0.9
  max_dirty_rate: 250
  calc_time: 10
  qmp_endpoints:
    100: 10.0.0.11:4444
    101: 10.0.0.12:4444
"""


class HelpFormatter(argparse.RawDescriptionHelpFormatter, argparse.ArgumentDefaultsHelpFormatter):
    """Combines raw description formatting with default value display in help."""


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="pxm-operator",
        description=c("pxm-operator: live-migration readiness for Proxmox VE clusters", "green", ["bold"]),
        formatter_class=HelpFormatter,
        epilog=_EPILOG,
    )
    _add_global_config_logging(p)
    _add_project_control(p)
    _add_proxmox_knobs(p)
    _add_vm_selection(p)
    _add_qmp_knobs(p)
    _add_planning_knobs(p)
    return p


def _build_preparser() -> argparse.ArgumentParser:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", action="append", default=[])
    pre.add_argument("-v", "--verbose", action="count", default=0)
    pre.add_argument("-q", "--quiet", action="count", default=0)
    pre.add_argument("--log-file", dest="log_file", default=None)
    pre.add_argument("--json-logs", dest="json_logs", action="store_true")
    pre.add_argument("--dump-config", action="store_true")
    return pre


def _load_merged_config(logger: Any, cfgs: Sequence[str]) -> Dict[str, Any]:
    if not cfgs:
        return {}
    return Config.load_many(logger, Config.expand_configs(logger, list(cfgs)))


def validate_args(args: argparse.Namespace, conf: Dict[str, Any]) -> None:
    cmd = _merged_get(args, conf, "cmd")
    if not _require(cmd):
        raise Fatal(2, f"missing cmd (use --cmd or YAML `cmd:`; one of {', '.join(COMMANDS)})")
    if cmd not in COMMANDS:
        raise Fatal(2, f"unknown cmd {cmd!r} (one of {', '.join(COMMANDS)})")
    args.cmd = cmd

    if not 0.0 < float(args.memory_threshold) <= 1.0:
        raise Fatal(2, f"--memory-threshold must be in (0, 1] (got {args.memory_threshold})")
    if args.max_migrations < 1:
        raise Fatal(2, f"--max-migrations must be >= 1 (got {args.max_migrations})")
    if args.wait_policy not in WAIT_POLICIES:
        # YAML values bypass argparse choices.
        raise Fatal(2, f"--wait-policy must be one of {', '.join(WAIT_POLICIES)} (got {args.wait_policy!r})")

    if cmd != "dirty-rate":
        args.proxmox_url = _merged_url(args, conf)
        args.proxmox_token = _merged_secret(args, conf, "proxmox_token", "proxmox_token_env", ENV_PROXMOX_TOKEN)
        if not _require(args.proxmox_url) or not _require(args.proxmox_token):
            raise Fatal(2, "PROXMOX_URL and PROXMOX_TOKEN must be set (flags, YAML or environment)")

    if cmd in ("targets", "migrate") and (args.vmid is None or not _require(args.node)):
        raise Fatal(2, f"{cmd}: --vmid and --node are required")
    if cmd == "migrate" and not _require(args.target):
        raise Fatal(2, "migrate: --target is required")
    if cmd == "dirty-rate" and not _require(args.qmp) and args.vmid is None:
        raise Fatal(2, "dirty-rate: need --qmp HOST:PORT or --vmid with a `qmp_endpoints` entry")


def parse_args_with_config(
    argv: Optional[Sequence[str]] = None,
    logger: Any = None,
) -> Tuple[argparse.Namespace, Dict[str, Any], Any]:
    """
    Flow:
      Phase 0: parse only the flags needed to locate config/logging
      Phase 1: load+merge config files
      Phase 2: apply config as defaults onto the parser
      Phase 3: full parse
      Phase 4: validate using merged config + args
    """
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)

    parser = build_parser()
    args0, _rest = _build_preparser().parse_known_args(argv)

    if logger is None:
        logger = Log.setup(args0.verbose, args0.log_file, quiet=args0.quiet, json_logs=args0.json_logs)

    conf = _load_merged_config(logger, args0.config or [])

    if args0.dump_config:
        print(U.json_dump(redact_secrets(conf)))
        raise SystemExit(0)

    Config.apply_as_defaults(logger, parser, conf)
    args = parser.parse_args(argv)
    validate_args(args, conf)
    return args, conf, logger
