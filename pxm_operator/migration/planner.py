# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pxm_operator/migration/planner.py
"""
Migration planning for hosts under memory pressure.

Per VM the entry walks:
  candidate -> targets_resolved -> ready | not_ready -> accepted | rejected
with no_target / busy / error as early exits. Nothing is retried or rolled
back; a rejected entry keeps the remote diagnostic in `error`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from ..config.settings import QMPEndpoint
from ..core.exceptions import MeasurementIncomplete, MigrationRejected, PxmOperatorError
from ..core.logger import Log
from ..core.logging_utils import safe_logger
from ..monitor.memory_monitor import DEFAULT_MEMORY_THRESHOLD, check_pressure, validate_threshold
from ..proxmox.client import ProxmoxClient
from ..proxmox.models import Host, Inventory, MigrationRequest, MigrationTargetSet, VirtualMachine
from ..qmp.dirty_rate import DirtyRatePolicy, measure_dirty_rate
from ..qmp.models import DirtyRateMeasurement


class PlanState(str, Enum):
    CANDIDATE = "candidate"
    TARGETS_RESOLVED = "targets_resolved"
    READY = "ready"
    NOT_READY = "not_ready"
    NO_TARGET = "no_target"
    BUSY = "busy"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    ERROR = "error"


@dataclass
class MigrationPlanEntry:
    vm: VirtualMachine
    state: PlanState = PlanState.CANDIDATE
    targets: Optional[MigrationTargetSet] = None
    target: Optional[str] = None
    measurement: Optional[DirtyRateMeasurement] = None
    task_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def request(self) -> Optional[MigrationRequest]:
        if not self.target:
            return None
        return MigrationRequest(vmid=self.vm.vmid, name=self.vm.name, source_node=self.vm.node, target_node=self.target)

    def to_dict(self) -> Dict[str, object]:
        return {
            "vmid": self.vm.vmid,
            "name": self.vm.name,
            "source": self.vm.node,
            "state": self.state.value,
            "allowed_targets": list(self.targets.allowed_nodes) if self.targets else [],
            "target": self.target,
            "dirty_rate_mbps": self.measurement.dirty_rate if self.measurement else None,
            "task_id": self.task_id,
            "error": self.error,
        }


MeasureFn = Callable[..., DirtyRateMeasurement]


class DirtyRateGate:
    """
    Readiness check: a VM is ready when its measured dirty rate is at most
    `max_dirty_rate` MB/s. VMs without a known QMP endpoint pass unless
    `require_measurement` is set.
    """

    def __init__(
        self,
        endpoints: Dict[int, QMPEndpoint],
        max_dirty_rate: float,
        *,
        calc_time: int = 10,
        sample_pages: Optional[int] = None,
        policy: Optional[DirtyRatePolicy] = None,
        require_measurement: bool = False,
        logger: Optional[logging.Logger] = None,
        measure: Optional[MeasureFn] = None,
    ):
        if max_dirty_rate < 0:
            raise ValueError(f"max_dirty_rate must be >= 0 (got {max_dirty_rate})")
        self.endpoints = dict(endpoints)
        self.max_dirty_rate = float(max_dirty_rate)
        self.calc_time = calc_time
        self.sample_pages = sample_pages
        self.policy = policy
        self.require_measurement = require_measurement
        self.logger = safe_logger(logger)
        self._measure = measure or measure_dirty_rate

    def check(self, vm: VirtualMachine) -> Tuple[bool, Optional[DirtyRateMeasurement]]:
        ep = self.endpoints.get(vm.vmid)
        if ep is None:
            if self.require_measurement:
                return False, None
            Log.warn(self.logger, f"No QMP endpoint for VM{vm.vmid}; skipping dirty-rate check")
            return True, None

        m = self._measure(
            ep.host,
            ep.port,
            self.calc_time,
            sample_pages=self.sample_pages,
            policy=self.policy,
            connect_timeout=ep.connect_timeout,
            read_timeout=ep.read_timeout,
            logger=self.logger,
        )
        return m.dirty_rate <= self.max_dirty_rate, m


class MigrationPlanner:
    def __init__(
        self,
        client: ProxmoxClient,
        *,
        threshold: float = DEFAULT_MEMORY_THRESHOLD,
        gate: Optional[DirtyRateGate] = None,
        max_migrations: int = 1,
        logger: Optional[logging.Logger] = None,
    ):
        if max_migrations < 1:
            raise ValueError(f"max_migrations must be >= 1 (got {max_migrations})")
        self.client = client
        self.threshold = validate_threshold(threshold)
        self.gate = gate
        self.max_migrations = max_migrations
        self.logger = safe_logger(logger)

    @staticmethod
    def select_candidates(inventory: Inventory, node: str) -> List[VirtualMachine]:
        """Running VMs on `node`, biggest memory user first."""
        vms = [vm for vm in inventory.vms_on(node) if vm.running]
        return sorted(vms, key=lambda vm: vm.mem, reverse=True)

    def choose_target(
        self,
        vm: VirtualMachine,
        targets: MigrationTargetSet,
        hosts: Dict[str, Host],
        pressured: List[str],
        reserved: Dict[str, int],
    ) -> Optional[str]:
        """
        Allowed host with the lowest projected memory ratio that stays at or
        under the threshold after receiving `vm`. Ties keep allowed_nodes order.
        """
        best: Optional[Tuple[float, str]] = None
        for name in targets.allowed_nodes:
            h = hosts.get(name)
            if h is None or name in pressured or name == vm.node or h.max_mem <= 0:
                continue
            projected = (h.mem + reserved.get(name, 0) + vm.mem) / h.max_mem
            if projected > self.threshold:
                continue
            if best is None or projected < best[0]:
                best = (projected, name)
        return best[1] if best else None

    def plan(self, inventory: Optional[Inventory] = None, *, execute: bool = False) -> List[MigrationPlanEntry]:
        inv = inventory if inventory is not None else self.client.get_inventory()
        hosts = {h.name: h for h in inv.hosts}
        pressured = check_pressure(inv.hosts, self.threshold)

        if not pressured:
            Log.ok(self.logger, "All nodes have sufficient memory")
            return []
        Log.warn(self.logger, f"High memory nodes: {pressured}")

        entries: List[MigrationPlanEntry] = []
        reserved: Dict[str, int] = {}
        planned = 0

        for node in pressured:
            source = hosts[node]
            freed = 0
            for vm in self.select_candidates(inv, node):
                if planned >= self.max_migrations:
                    return entries
                if (source.mem - freed) / source.max_mem <= self.threshold:
                    break

                entry = MigrationPlanEntry(vm=vm)
                entries.append(entry)
                self._advance(entry, hosts, pressured, reserved, execute=execute)

                if entry.state in (PlanState.READY, PlanState.ACCEPTED):
                    planned += 1
                    freed += vm.mem
                    assert entry.target is not None
                    reserved[entry.target] = reserved.get(entry.target, 0) + vm.mem

        return entries

    def _advance(
        self,
        entry: MigrationPlanEntry,
        hosts: Dict[str, Host],
        pressured: List[str],
        reserved: Dict[str, int],
        *,
        execute: bool,
    ) -> None:
        vm = entry.vm
        log = Log.bind(self.logger, vmid=vm.vmid, node=vm.node)

        try:
            entry.targets = self.client.get_migration_targets(vm.vmid, vm.node)
            entry.state = PlanState.TARGETS_RESOLVED
            if entry.targets.running > 0:
                entry.state = PlanState.BUSY
                entry.error = f"{entry.targets.running} migration(s) already running"
                return

            entry.target = self.choose_target(vm, entry.targets, hosts, pressured, reserved)
            if entry.target is None:
                entry.state = PlanState.NO_TARGET
                log.info("No eligible target (allowed: %s)", entry.targets.allowed_nodes)
                return

            if self.gate is not None:
                ready, entry.measurement = self.gate.check(vm)
                if not ready:
                    entry.state = PlanState.NOT_READY
                    entry.error = (
                        f"dirty rate {entry.measurement.dirty_rate:.2f} MB/s > {self.gate.max_dirty_rate:.2f} MB/s"
                        if entry.measurement
                        else "no dirty-rate measurement available"
                    )
                    log.info("Not ready: %s", entry.error)
                    return
            entry.state = PlanState.READY
        except MeasurementIncomplete as e:
            entry.state = PlanState.NOT_READY
            entry.error = str(e)
            log.warning("Not ready: %s", e)
            return
        except PxmOperatorError as e:
            entry.state = PlanState.ERROR
            entry.error = str(e)
            log.warning("Planning failed: %s", e)
            return

        if not execute:
            return

        request = entry.request
        assert request is not None
        try:
            entry.task_id = self.client.execute_migration(request)
            entry.state = PlanState.ACCEPTED
        except MigrationRejected as e:
            entry.state = PlanState.REJECTED
            entry.error = e.body
            Log.fail(log, f"Migration rejected: {request.describe()}", status=e.status)
        except PxmOperatorError as e:
            entry.state = PlanState.ERROR
            entry.error = str(e)
            Log.fail(log, f"Migration request failed: {e}")
