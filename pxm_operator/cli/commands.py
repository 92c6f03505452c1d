# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pxm_operator/cli/commands.py
from __future__ import annotations

import argparse
import logging
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from ..config.settings import ProxmoxConfig, QMPEndpoint, parse_qmp_endpoints
from ..core.exceptions import Fatal
from ..core.logger import Log
from ..core.utils import U
from ..migration.planner import DirtyRateGate, MigrationPlanEntry, MigrationPlanner, PlanState
from ..monitor.memory_monitor import MemoryMonitor
from ..proxmox.client import ProxmoxClient
from ..proxmox.models import Host, MigrationRequest, VirtualMachine
from ..qmp.dirty_rate import DirtyRatePolicy, measure_dirty_rate
from ..qmp.models import DirtyRateMeasurement


class CommandRunner:
    """
    Dispatches `args.cmd` to the matching operation and renders the result.
    Project errors propagate to the entry point, which maps them to exit codes.
    """

    def __init__(
        self,
        logger: logging.Logger,
        args: argparse.Namespace,
        conf: Optional[Dict[str, Any]] = None,
        *,
        client: Optional[ProxmoxClient] = None,
        console: Optional[Console] = None,
    ):
        self.logger = logger
        self.args = args
        self.conf = conf or {}
        self._client = client
        self.console = console or Console()

    # ------------------------------------------------------------------
    # wiring
    # ------------------------------------------------------------------

    @property
    def client(self) -> ProxmoxClient:
        if self._client is None:
            try:
                cfg = ProxmoxConfig(
                    base_url=self.args.proxmox_url,
                    token=self.args.proxmox_token,
                    insecure=bool(self.args.insecure),
                    timeout=float(self.args.timeout),
                    ca_bundle=self.args.ca_bundle,
                )
            except ValueError as e:
                raise Fatal(2, str(e), cause=e) from e
            self.logger.debug("Proxmox API: %s", cfg.describe())
            self._client = ProxmoxClient(cfg, logger=self.logger)
        return self._client

    def _endpoints(self) -> Dict[int, QMPEndpoint]:
        try:
            return parse_qmp_endpoints(
                self.conf.get("qmp_endpoints"),
                connect_timeout=self.args.qmp_connect_timeout,
                read_timeout=self.args.qmp_read_timeout,
            )
        except ValueError as e:
            raise Fatal(2, f"qmp_endpoints: {e}", cause=e) from e

    def _policy(self) -> DirtyRatePolicy:
        return DirtyRatePolicy(wait_policy=self.args.wait_policy)

    def _gate(self) -> Optional[DirtyRateGate]:
        if self.args.max_dirty_rate is None:
            return None
        return DirtyRateGate(
            self._endpoints(),
            self.args.max_dirty_rate,
            calc_time=self.args.calc_time,
            sample_pages=self.args.sample_pages,
            policy=self._policy(),
            require_measurement=bool(self.args.require_measurement),
            logger=self.logger,
        )

    def _emit_json(self, obj: Any) -> bool:
        if self.args.json:
            print(U.json_dump(obj))
            return True
        return False

    # ------------------------------------------------------------------
    # dispatch
    # ------------------------------------------------------------------

    def run(self) -> int:
        handlers = {
            "inventory": self.cmd_inventory,
            "pressure": self.cmd_pressure,
            "targets": self.cmd_targets,
            "dirty-rate": self.cmd_dirty_rate,
            "migrate": self.cmd_migrate,
            "plan": self.cmd_plan,
        }
        try:
            return handlers[self.args.cmd]()
        finally:
            if self._client is not None:
                self._client.close()

    def cmd_inventory(self) -> int:
        Log.step(self.logger, "Fetching nodes and VMs")
        inv = self.client.get_inventory()
        if not self._emit_json(inv):
            self.console.print(self._hosts_table(inv.hosts))
            self.console.print(self._vms_table(inv.vms))
        return 0

    def cmd_pressure(self) -> int:
        monitor = MemoryMonitor(self.client, self.args.memory_threshold, logger=self.logger)
        high = monitor.check_memory_pressure()
        if self._emit_json({"threshold": monitor.threshold, "high_memory_nodes": high}):
            return 0
        if high:
            self.console.print(f"High memory nodes: {', '.join(high)}")
        else:
            self.console.print("All nodes have sufficient memory")
        return 0

    def cmd_targets(self) -> int:
        targets = self.client.get_migration_targets(self.args.vmid, self.args.node)
        if not self._emit_json(targets):
            allowed = ", ".join(targets.allowed_nodes) or "(none)"
            self.console.print(f"Migration targets for VM{self.args.vmid}: {allowed} (running: {targets.running})")
        return 0

    def _qmp_endpoint(self) -> QMPEndpoint:
        if self.args.qmp:
            try:
                return QMPEndpoint.parse(
                    self.args.qmp,
                    connect_timeout=self.args.qmp_connect_timeout,
                    read_timeout=self.args.qmp_read_timeout,
                )
            except ValueError as e:
                raise Fatal(2, f"--qmp: {e}", cause=e) from e
        ep = self._endpoints().get(self.args.vmid)
        if ep is None:
            U.die(self.logger, f"dirty-rate: no qmp_endpoints entry for VM{self.args.vmid}", code=2)
        return ep

    def cmd_dirty_rate(self) -> int:
        ep = self._qmp_endpoint()
        with self.console.status(f"Measuring dirty rate on {ep.describe()} ({self.args.calc_time}s)..."):
            result = measure_dirty_rate(
                ep.host,
                ep.port,
                self.args.calc_time,
                sample_pages=self.args.sample_pages,
                policy=self._policy(),
                connect_timeout=ep.connect_timeout,
                read_timeout=ep.read_timeout,
                logger=self.logger,
            )
        if not self._emit_json(result):
            self.console.print(self._measurement_table(result))
        return 0

    def cmd_migrate(self) -> int:
        request = MigrationRequest(
            vmid=self.args.vmid,
            name=self.args.name or "",
            source_node=self.args.node,
            target_node=self.args.target,
        )
        gate = self._gate()
        if gate is not None:
            vm = VirtualMachine(vmid=request.vmid, name=request.name, node=request.source_node, status="running")
            ready, m = gate.check(vm)
            if not ready:
                rate = f"{m.dirty_rate:.2f} MB/s" if m else "unmeasured"
                raise Fatal(3, f"VM{request.vmid} not ready for live migration (dirty rate {rate})")

        task_id = self.client.execute_migration(request)
        if not self._emit_json({"request": request, "task_id": task_id}):
            self.console.print(f"Migration started: {request.describe()}" + (f" [{task_id}]" if task_id else ""))
        return 0

    def cmd_plan(self) -> int:
        planner = MigrationPlanner(
            self.client,
            threshold=self.args.memory_threshold,
            gate=self._gate(),
            max_migrations=self.args.max_migrations,
            logger=self.logger,
        )
        entries = planner.plan(execute=bool(self.args.execute))
        if not self._emit_json([e.to_dict() for e in entries]):
            if entries:
                self.console.print(self._plan_table(entries))
            else:
                self.console.print("Nothing to migrate")
        failed = [e for e in entries if e.state in (PlanState.REJECTED, PlanState.ERROR)]
        return 1 if failed else 0

    # ------------------------------------------------------------------
    # rendering
    # ------------------------------------------------------------------

    @staticmethod
    def _hosts_table(hosts: List[Host]) -> Table:
        t = Table(title=f"Nodes ({len(hosts)})")
        for col in ("Node", "CPU", "Cores", "Memory", "Used"):
            t.add_column(col)
        for h in hosts:
            t.add_row(
                h.name,
                U.percent(h.cpu),
                str(h.max_cpu),
                f"{U.human_bytes(h.mem)} / {U.human_bytes(h.max_mem)}",
                U.percent(h.memory_ratio),
            )
        return t

    @staticmethod
    def _vms_table(vms: List[VirtualMachine]) -> Table:
        t = Table(title=f"VMs ({len(vms)})")
        for col in ("VMID", "Name", "Node", "Status", "CPU", "vCPUs", "Memory"):
            t.add_column(col)
        for vm in vms:
            t.add_row(
                str(vm.vmid),
                vm.name,
                vm.node,
                vm.status,
                U.percent(vm.cpu),
                str(vm.cpus),
                f"{U.human_bytes(vm.mem)} / {U.human_bytes(vm.max_mem)}",
            )
        return t

    @staticmethod
    def _measurement_table(m: DirtyRateMeasurement) -> Table:
        t = Table(title="Dirty rate", show_header=False)
        t.add_row("Status", m.raw_status)
        t.add_row("Dirty Rate", f"{m.dirty_rate:.2f} MB/s")
        t.add_row("Calc Time", f"{m.calc_time} {m.calc_time_unit}")
        t.add_row("Mode", m.mode)
        t.add_row("Sample Pages", str(m.sample_pages))
        return t

    @staticmethod
    def _plan_table(entries: List[MigrationPlanEntry]) -> Table:
        t = Table(title="Migration plan")
        for col in ("VMID", "Name", "Source", "Target", "Dirty rate", "State", "Detail"):
            t.add_column(col)
        for e in entries:
            t.add_row(
                str(e.vm.vmid),
                e.vm.name,
                e.vm.node,
                e.target or "-",
                f"{e.measurement.dirty_rate:.2f} MB/s" if e.measurement else "-",
                e.state.value,
                e.error or e.task_id or "",
            )
        return t
