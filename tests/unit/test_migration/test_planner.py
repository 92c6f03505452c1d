# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tests for migration planning: candidate order, target choice, readiness, execution."""
from __future__ import annotations

from unittest.mock import Mock

import pytest

from pxm_operator.config.settings import QMPEndpoint
from pxm_operator.core.exceptions import MeasurementIncomplete, MigrationRejected, ProxmoxAPIError
from pxm_operator.migration.planner import DirtyRateGate, MigrationPlanner, PlanState
from pxm_operator.proxmox.models import Host, Inventory, MigrationTargetSet, VirtualMachine
from pxm_operator.qmp.models import DirtyRateMeasurement, DirtyRateStatus

UPID = "UPID:pve1:0001A2B3:00C0FFEE:65000000:qmigrate:100:root@pam:"


def _inventory():
    return Inventory(
        hosts=[
            Host("pve1", mem=95, max_mem=100),
            Host("pve2", mem=40, max_mem=100),
            Host("pve3", mem=70, max_mem=100),
        ],
        vms=[
            VirtualMachine(101, name="web", node="pve1", status="running", mem=10),
            VirtualMachine(100, name="db", node="pve1", status="running", mem=20),
            VirtualMachine(102, name="old", node="pve1", status="stopped", mem=30),
            VirtualMachine(200, name="ci", node="pve2", status="running", mem=30),
        ],
    )


def _client(targets=None, *, execute=UPID):
    client = Mock()
    client.get_migration_targets.return_value = targets or MigrationTargetSet(["pve3", "pve2"], running=0)
    if isinstance(execute, Exception):
        client.execute_migration.side_effect = execute
    else:
        client.execute_migration.return_value = execute
    return client


def _measurement(rate):
    return DirtyRateMeasurement(status=DirtyRateStatus.MEASURED, raw_status="measured", dirty_rate=rate, calc_time=10)


def _gate(rate=None, *, exc=None, endpoints=None, require=False, max_rate=100.0):
    calls = []

    def measure(host, port, calc_time, **kw):
        calls.append((host, port, calc_time, kw))
        if exc is not None:
            raise exc
        return _measurement(rate)

    eps = endpoints if endpoints is not None else {100: QMPEndpoint("10.0.0.11"), 101: QMPEndpoint("10.0.0.12", 4445)}
    gate = DirtyRateGate(eps, max_rate, calc_time=5, require_measurement=require, measure=measure)
    return gate, calls


@pytest.mark.unit
class TestCandidatesAndTargets:
    def test_running_vms_biggest_first(self):
        vms = MigrationPlanner.select_candidates(_inventory(), "pve1")
        assert [vm.vmid for vm in vms] == [100, 101]

    def test_lowest_projected_ratio_wins(self):
        planner = MigrationPlanner(_client())
        inv = _inventory()
        hosts = {h.name: h for h in inv.hosts}
        vm = inv.vms[1]

        assert planner.choose_target(vm, MigrationTargetSet(["pve3", "pve2"]), hosts, ["pve1"], {}) == "pve2"

    def test_reservations_count(self):
        planner = MigrationPlanner(_client())
        hosts = {h.name: h for h in _inventory().hosts}
        vm = VirtualMachine(100, node="pve1", status="running", mem=20)

        target = planner.choose_target(vm, MigrationTargetSet(["pve3", "pve2"]), hosts, ["pve1"], {"pve2": 45})

        assert target == "pve3"

    def test_excludes_source_pressured_unknown_and_overfull(self):
        planner = MigrationPlanner(_client())
        hosts = {
            "pve1": Host("pve1", mem=95, max_mem=100),
            "pve4": Host("pve4", mem=96, max_mem=100),
            "pve5": Host("pve5", mem=85, max_mem=100),
        }
        vm = VirtualMachine(100, node="pve1", status="running", mem=20)
        allowed = MigrationTargetSet(["pve1", "pve4", "ghost", "pve5"])

        assert planner.choose_target(vm, allowed, hosts, ["pve1", "pve4"], {}) is None

    def test_invalid_settings(self):
        with pytest.raises(ValueError):
            MigrationPlanner(_client(), max_migrations=0)
        with pytest.raises(ValueError):
            MigrationPlanner(_client(), threshold=1.2)


@pytest.mark.unit
class TestPlan:
    def test_no_pressure_no_plan(self):
        inv = Inventory(hosts=[Host("pve1", mem=10, max_mem=100)])
        client = _client()

        assert MigrationPlanner(client).plan(inv) == []
        client.get_migration_targets.assert_not_called()

    def test_fetches_inventory_when_not_given(self):
        client = _client()
        client.get_inventory.return_value = Inventory(hosts=[Host("pve1", mem=10, max_mem=100)])

        MigrationPlanner(client).plan()

        client.get_inventory.assert_called_once_with()

    def test_dry_run_plans_ready_entry(self):
        client = _client()

        entries = MigrationPlanner(client, max_migrations=3).plan(_inventory())

        assert len(entries) == 1
        e = entries[0]
        assert e.vm.vmid == 100
        assert e.state is PlanState.READY
        assert e.target == "pve2"
        assert e.request.describe() == "VM100 pve1 → pve2"
        client.get_migration_targets.assert_called_once_with(100, "pve1")
        client.execute_migration.assert_not_called()

    def test_stops_at_max_migrations(self):
        inv = _inventory()
        inv.hosts[0] = Host("pve1", mem=990, max_mem=1000)
        client = _client(MigrationTargetSet(["pve2"]))

        entries = MigrationPlanner(client, max_migrations=1).plan(inv)

        assert [e.vm.vmid for e in entries] == [100]

    def test_continues_until_source_relieved(self):
        inv = _inventory()
        inv.hosts[0] = Host("pve1", mem=990, max_mem=1000)
        client = _client(MigrationTargetSet(["pve2"]))

        entries = MigrationPlanner(client, max_migrations=5).plan(inv)

        assert [(e.vm.vmid, e.target) for e in entries] == [(100, "pve2"), (101, "pve2")]

    def test_busy_when_migration_running(self):
        entries = MigrationPlanner(_client(MigrationTargetSet(["pve2"], running=1))).plan(_inventory())

        assert entries[0].state is PlanState.BUSY
        assert entries[0].target is None

    def test_no_target(self):
        entries = MigrationPlanner(_client(MigrationTargetSet([]))).plan(_inventory())

        assert [e.state for e in entries] == [PlanState.NO_TARGET, PlanState.NO_TARGET]

    def test_api_error_recorded_per_vm(self):
        client = _client()
        client.get_migration_targets.side_effect = [ProxmoxAPIError("status 500", status=500), MigrationTargetSet(["pve2"])]

        entries = MigrationPlanner(client).plan(_inventory())

        assert entries[0].state is PlanState.ERROR
        assert "status 500" in entries[0].error
        assert entries[1].state is PlanState.READY

    def test_to_dict(self):
        d = MigrationPlanner(_client()).plan(_inventory())[0].to_dict()
        assert d["vmid"] == 100
        assert d["state"] == "ready"
        assert d["allowed_targets"] == ["pve3", "pve2"]
        assert d["dirty_rate_mbps"] is None


@pytest.mark.unit
class TestReadinessGate:
    def test_ready_under_limit(self):
        gate, calls = _gate(rate=40.0)

        entries = MigrationPlanner(_client(), gate=gate).plan(_inventory())

        assert entries[0].state is PlanState.READY
        assert entries[0].measurement.dirty_rate == 40.0
        host, port, calc_time, kw = calls[0]
        assert (host, port, calc_time) == ("10.0.0.11", 4444, 5)
        assert kw["connect_timeout"] == 10.0

    def test_limit_is_inclusive(self):
        gate, _ = _gate(rate=100.0)
        assert gate.check(VirtualMachine(100))[0] is True

    def test_not_ready_moves_to_next_candidate(self):
        gate, _ = _gate(rate=250.0)

        entries = MigrationPlanner(_client(), gate=gate).plan(_inventory())

        assert [e.state for e in entries] == [PlanState.NOT_READY, PlanState.NOT_READY]
        assert "250.00 MB/s > 100.00 MB/s" in entries[0].error

    def test_incomplete_measurement_is_not_ready(self):
        gate, _ = _gate(exc=MeasurementIncomplete("measuring"))

        entries = MigrationPlanner(_client(), gate=gate).plan(_inventory())

        assert entries[0].state is PlanState.NOT_READY
        assert entries[0].error == "measurement not completed: status=measuring"

    def test_missing_endpoint_passes_by_default(self):
        gate, calls = _gate(rate=1.0, endpoints={})
        ready, m = gate.check(VirtualMachine(100))
        assert ready is True
        assert m is None
        assert calls == []

    def test_missing_endpoint_required(self):
        gate, _ = _gate(rate=1.0, endpoints={}, require=True)

        entries = MigrationPlanner(_client(), gate=gate).plan(_inventory())

        assert entries[0].state is PlanState.NOT_READY
        assert entries[0].error == "no dirty-rate measurement available"

    def test_negative_limit(self):
        with pytest.raises(ValueError):
            DirtyRateGate({}, -1)


@pytest.mark.unit
class TestExecute:
    def test_accepted(self):
        client = _client()

        entries = MigrationPlanner(client).plan(_inventory(), execute=True)

        assert entries[0].state is PlanState.ACCEPTED
        assert entries[0].task_id == UPID
        req = client.execute_migration.call_args[0][0]
        assert (req.vmid, req.source_node, req.target_node) == (100, "pve1", "pve2")

    def test_rejected_keeps_body(self):
        client = _client(execute=MigrationRejected(500, "VM is locked (backup)"))

        entries = MigrationPlanner(client).plan(_inventory(), execute=True)

        assert entries[0].state is PlanState.REJECTED
        assert entries[0].error == "VM is locked (backup)"

    def test_not_ready_is_never_executed(self):
        gate, _ = _gate(rate=500.0)
        client = _client()

        MigrationPlanner(client, gate=gate).plan(_inventory(), execute=True)

        client.execute_migration.assert_not_called()
