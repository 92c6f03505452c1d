# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pxm_operator/monitor/memory_monitor.py
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from ..core.logging_utils import safe_logger
from ..proxmox.client import ProxmoxClient
from ..proxmox.models import Host

DEFAULT_MEMORY_THRESHOLD = 0.9


def validate_threshold(threshold: float) -> float:
    t = float(threshold)
    if not 0.0 < t <= 1.0:
        raise ValueError(f"memory threshold must be in (0, 1] (got {threshold})")
    return t


def is_under_pressure(host: Host, threshold: float) -> bool:
    # Zero capacity means "unknown", never pressure.
    if host.max_mem <= 0:
        return False
    return host.mem / host.max_mem > threshold


def check_pressure(hosts: Iterable[Host], threshold: float) -> List[str]:
    """Names of hosts whose used/capacity ratio is strictly above threshold, in input order."""
    return [h.name for h in hosts if is_under_pressure(h, threshold)]


class MemoryMonitor:
    def __init__(
        self,
        client: ProxmoxClient,
        threshold: float = DEFAULT_MEMORY_THRESHOLD,
        *,
        logger: Optional[logging.Logger] = None,
    ):
        self.client = client
        self.threshold = validate_threshold(threshold)
        self.logger = safe_logger(logger)

    def check_memory_pressure(self, hosts: Optional[List[Host]] = None) -> List[str]:
        """Evaluate `hosts`, or a fresh node listing when none is given."""
        if hosts is None:
            hosts = self.client.get_nodes()
        high = check_pressure(hosts, self.threshold)
        self.logger.debug("memory pressure > %.2f: %s of %d host(s)", self.threshold, high, len(hosts))
        return high
