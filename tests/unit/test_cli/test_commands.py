# SPDX-License-Identifier: LGPL-3.0-or-later
import io
import json
import logging
import unittest
from unittest.mock import Mock, patch

from rich.console import Console

from pxm_operator.cli.commands import CommandRunner
from pxm_operator.cli.parser import build_parser, validate_args
from pxm_operator.core.exceptions import Fatal, MigrationRejected
from pxm_operator.proxmox.models import Host, Inventory, MigrationTargetSet, VirtualMachine
from pxm_operator.qmp.models import DirtyRateMeasurement, DirtyRateStatus

LOG = logging.getLogger("test.commands")
API = ["--proxmox-url", "https://pve1:8006", "--proxmox-token", "root@pam!ops=t"]
UPID = "UPID:pve1:0001A2B3:00C0FFEE:65000000:qmigrate:100:root@pam:"


def _args(*argv, conf=None):
    args = build_parser().parse_args(list(argv))
    validate_args(args, conf or {})
    return args


def _runner(*argv, conf=None, client=None):
    out = io.StringIO()
    console = Console(file=out, width=200, color_system=None)
    runner = CommandRunner(LOG, _args(*argv, conf=conf), conf, client=client or Mock(), console=console)
    return runner, out


def _inventory():
    return Inventory(
        hosts=[Host("pve1", cpu=0.2, max_cpu=16, mem=95, max_mem=100), Host("pve2", mem=30, max_mem=100)],
        vms=[VirtualMachine(100, name="db", node="pve1", status="running", cpus=4, mem=20, max_mem=32)],
        warnings=["Node pve3: GET ...: status 595"],
    )


def _measured(rate):
    return DirtyRateMeasurement(
        status=DirtyRateStatus.MEASURED, raw_status="measured", dirty_rate=rate, calc_time=1, mode="page-sampling", sample_pages=512
    )


class TestInventoryAndPressure(unittest.TestCase):
    def test_inventory_tables(self):
        client = Mock()
        client.get_inventory.return_value = _inventory()
        runner, out = _runner("--cmd", "inventory", *API, client=client)

        self.assertEqual(runner.run(), 0)

        text = out.getvalue()
        self.assertIn("Nodes (2)", text)
        self.assertIn("95.00%", text)
        self.assertIn("db", text)
        client.close.assert_called_once_with()

    def test_pressure_json(self):
        client = Mock()
        client.get_nodes.return_value = _inventory().hosts
        runner, _out = _runner("--cmd", "pressure", "--json", *API, client=client)

        with patch("builtins.print") as p:
            self.assertEqual(runner.run(), 0)

        payload = json.loads(p.call_args[0][0])
        self.assertEqual(payload, {"threshold": 0.9, "high_memory_nodes": ["pve1"]})

    def test_pressure_none(self):
        client = Mock()
        client.get_nodes.return_value = [Host("pve2", mem=30, max_mem=100)]
        runner, out = _runner("--cmd", "pressure", *API, client=client)

        runner.run()

        self.assertIn("All nodes have sufficient memory", out.getvalue())

    def test_targets(self):
        client = Mock()
        client.get_migration_targets.return_value = MigrationTargetSet(["pve2", "pve3"], running=0)
        runner, out = _runner("--cmd", "targets", "--vmid", "100", "--node", "pve1", *API, client=client)

        runner.run()

        client.get_migration_targets.assert_called_once_with(100, "pve1")
        self.assertIn("pve2, pve3", out.getvalue())


class TestDirtyRate(unittest.TestCase):
    def test_explicit_endpoint(self):
        runner, out = _runner("--cmd", "dirty-rate", "--qmp", "10.0.0.11:4445", "--calc-time", "1")

        with patch("pxm_operator.cli.commands.measure_dirty_rate", return_value=_measured(42.0)) as m:
            self.assertEqual(runner.run(), 0)

        self.assertEqual(m.call_args[0], ("10.0.0.11", 4445, 1))
        self.assertIn("42.00 MB/s", out.getvalue())

    def test_endpoint_from_config(self):
        conf = {"qmp_endpoints": {100: "10.0.0.12"}}
        runner, _out = _runner("--cmd", "dirty-rate", "--vmid", "100", conf=conf)

        with patch("pxm_operator.cli.commands.measure_dirty_rate", return_value=_measured(1.0)) as m:
            runner.run()

        self.assertEqual(m.call_args[0][:2], ("10.0.0.12", 4444))

    def test_unknown_vm(self):
        runner, _out = _runner("--cmd", "dirty-rate", "--vmid", "999", conf={"qmp_endpoints": {100: "h"}})
        with self.assertRaises(Fatal):
            runner.run()


class TestMigrate(unittest.TestCase):
    ARGV = ("--cmd", "migrate", "--vmid", "100", "--node", "pve1", "--target", "pve2", *API)

    def test_started(self):
        client = Mock()
        client.execute_migration.return_value = UPID
        runner, out = _runner(*self.ARGV, client=client)

        self.assertEqual(runner.run(), 0)

        req = client.execute_migration.call_args[0][0]
        self.assertEqual((req.vmid, req.source_node, req.target_node), (100, "pve1", "pve2"))
        self.assertIn(UPID, out.getvalue())

    def test_rejected_propagates(self):
        client = Mock()
        client.execute_migration.side_effect = MigrationRejected(500, "VM is locked")
        runner, _out = _runner(*self.ARGV, client=client)

        with self.assertRaises(MigrationRejected):
            runner.run()
        client.close.assert_called_once_with()

    def test_gate_blocks_hot_vm(self):
        client = Mock()
        conf = {"qmp_endpoints": {100: "10.0.0.11:4444"}}
        runner, _out = _runner(*self.ARGV, "--max-dirty-rate", "100", conf=conf, client=client)

        with patch("pxm_operator.migration.planner.measure_dirty_rate", return_value=_measured(300.0)):
            with self.assertRaises(Fatal) as ctx:
                runner.run()

        self.assertEqual(ctx.exception.code, 3)
        client.execute_migration.assert_not_called()


class TestPlan(unittest.TestCase):
    def test_dry_run(self):
        client = Mock()
        client.get_inventory.return_value = _inventory()
        client.get_migration_targets.return_value = MigrationTargetSet(["pve2"])
        runner, out = _runner("--cmd", "plan", *API, client=client)

        self.assertEqual(runner.run(), 0)

        self.assertIn("ready", out.getvalue())
        client.execute_migration.assert_not_called()

    def test_rejection_sets_exit_code(self):
        client = Mock()
        client.get_inventory.return_value = _inventory()
        client.get_migration_targets.return_value = MigrationTargetSet(["pve2"])
        client.execute_migration.side_effect = MigrationRejected(500, "locked")
        runner, out = _runner("--cmd", "plan", "--execute", *API, client=client)

        self.assertEqual(runner.run(), 1)
        self.assertIn("rejected", out.getvalue())

    def test_nothing_to_do(self):
        client = Mock()
        client.get_inventory.return_value = Inventory(hosts=[Host("pve2", mem=30, max_mem=100)])
        runner, out = _runner("--cmd", "plan", *API, client=client)

        self.assertEqual(runner.run(), 0)
        self.assertIn("Nothing to migrate", out.getvalue())


if __name__ == "__main__":
    unittest.main()
