# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pxm_operator/__init__.py
"""
pxm_operator - live-migration readiness for Proxmox VE clusters

Finds hosts under memory pressure, asks the cluster which nodes may receive a
VM, measures guest memory dirty rate over QMP and starts online migrations.

Usage as a library:

    from pxm_operator import ProxmoxClient, ProxmoxConfig, MemoryMonitor, measure_dirty_rate

    client = ProxmoxClient(ProxmoxConfig(base_url="https://pve1:8006", token="root@pam!ops=..."))
    high = MemoryMonitor(client, 0.9).check_memory_pressure()
    m = measure_dirty_rate("10.0.0.11", 4444, calc_time=10)
"""

__version__ = "0.1.0"

from .config import ProxmoxConfig, QMPEndpoint
from .core.exceptions import (
    Fatal,
    MeasurementIncomplete,
    MigrationRejected,
    ProxmoxAPIError,
    PxmOperatorError,
    QMPConnectionError,
    QMPProtocolError,
)
from .migration import DirtyRateGate, MigrationPlanner
from .monitor import MemoryMonitor
from .proxmox import ProxmoxClient
from .qmp import QMPSession, measure_dirty_rate

__all__ = [
    "__version__",
    "DirtyRateGate",
    "Fatal",
    "MeasurementIncomplete",
    "MemoryMonitor",
    "MigrationPlanner",
    "MigrationRejected",
    "ProxmoxAPIError",
    "ProxmoxClient",
    "ProxmoxConfig",
    "PxmOperatorError",
    "QMPConnectionError",
    "QMPEndpoint",
    "QMPProtocolError",
    "QMPSession",
    "measure_dirty_rate",
]
