# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pxm_operator/cli/groups.py
from __future__ import annotations

import argparse

from ..monitor.memory_monitor import DEFAULT_MEMORY_THRESHOLD
from ..qmp.dirty_rate import WAIT_FIXED, WAIT_POLICIES

COMMANDS = ("inventory", "pressure", "targets", "dirty-rate", "migrate", "plan")


def _add_global_config_logging(p: argparse.ArgumentParser) -> None:
    # ------------------------------------------------------------------
    # Global config/logging (two-phase parse relies on these)
    # ------------------------------------------------------------------
    from .. import __version__

    p.add_argument(
        "--config",
        action="append",
        default=[],
        help="YAML/JSON config file (repeatable; later overrides earlier).",
    )
    p.add_argument("--dump-config", action="store_true", help="Print merged config and exit.")
    p.add_argument("--version", action="version", version=__version__)
    p.add_argument("-v", "--verbose", action="count", default=0, help="Verbosity: -vv debug, -vvv trace")
    p.add_argument("-q", "--quiet", action="count", default=0, help="Quieter: -q warnings, -qq errors")
    p.add_argument("--log-file", dest="log_file", default=None, help="Write logs to file.")
    p.add_argument("--json-logs", dest="json_logs", action="store_true", help="Emit NDJSON log lines.")
    p.add_argument("--json", dest="json", action="store_true", help="Print results as JSON on stdout.")


def _add_project_control(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--cmd",
        dest="cmd",
        default=None,
        choices=COMMANDS,
        help="Operation (normally from YAML `cmd:`).",
    )


def _add_proxmox_knobs(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("Proxmox API")
    g.add_argument("--proxmox-url", dest="proxmox_url", default=None, help="Base URL, e.g. https://pve1:8006 (env PROXMOX_URL).")
    g.add_argument("--proxmox-token", dest="proxmox_token", default=None, help="API token user@realm!id=secret (env PROXMOX_TOKEN).")
    g.add_argument("--proxmox-token-env", dest="proxmox_token_env", default=None, help="Read the API token from this env var.")
    g.add_argument(
        "--insecure",
        dest="insecure",
        action="store_true",
        help="INSECURE: do not verify the API's TLS certificate.",
    )
    g.add_argument("--ca-bundle", dest="ca_bundle", default=None, help="CA bundle used to verify the API certificate.")
    g.add_argument("--timeout", dest="timeout", type=float, default=30.0, help="HTTP timeout (seconds).")


def _add_vm_selection(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("VM selection (targets / dirty-rate / migrate)")
    g.add_argument("--vmid", dest="vmid", type=int, default=None, help="VM id.")
    g.add_argument("--node", dest="node", default=None, help="Node currently running the VM.")
    g.add_argument("--target", dest="target", default=None, help="Destination node (migrate).")
    g.add_argument("--name", dest="name", default=None, help="VM name (informational).")


def _add_qmp_knobs(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("QMP dirty-rate measurement")
    g.add_argument("--qmp", dest="qmp", default=None, help="QMP endpoint host:port (default port 4444).")
    g.add_argument("--calc-time", dest="calc_time", type=int, default=10, help="Sampling time in seconds.")
    g.add_argument("--sample-pages", dest="sample_pages", type=int, default=None, help="Pages sampled per GiB.")
    g.add_argument("--wait-policy", dest="wait_policy", default=WAIT_FIXED, choices=WAIT_POLICIES, help="How to wait for the result.")
    g.add_argument("--qmp-connect-timeout", dest="qmp_connect_timeout", type=float, default=10.0)
    g.add_argument("--qmp-read-timeout", dest="qmp_read_timeout", type=float, default=60.0)


def _add_planning_knobs(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("Planning")
    g.add_argument(
        "--memory-threshold",
        dest="memory_threshold",
        type=float,
        default=DEFAULT_MEMORY_THRESHOLD,
        help="Host memory used/capacity ratio above which the host is under pressure.",
    )
    g.add_argument("--max-dirty-rate", dest="max_dirty_rate", type=float, default=None, help="Readiness limit in MB/s.")
    g.add_argument(
        "--require-measurement",
        dest="require_measurement",
        action="store_true",
        help="Treat VMs without a QMP endpoint as not ready.",
    )
    g.add_argument("--max-migrations", dest="max_migrations", type=int, default=1, help="Upper bound per plan run.")
    g.add_argument("--execute", dest="execute", action="store_true", help="plan: start the planned migrations.")
