# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pxm_operator/proxmox/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Mapping


def _num(d: Mapping[str, Any], key: str, cast, default=0):
    v = d.get(key)
    if v is None or v == "":
        return default
    return cast(v)


@dataclass(frozen=True)
class Host:
    """One cluster node as reported by /nodes."""

    name: str
    cpu: float = 0.0  # utilization ratio 0..1
    max_cpu: int = 0
    mem: int = 0  # bytes used
    max_mem: int = 0  # bytes capacity

    @property
    def memory_ratio(self) -> float:
        """Used/capacity; 0.0 for a host that reports no capacity."""
        if self.max_mem <= 0:
            return 0.0
        return self.mem / self.max_mem

    @property
    def mem_free(self) -> int:
        return max(0, self.max_mem - self.mem)

    @classmethod
    def from_api(cls, d: Mapping[str, Any]) -> "Host":
        return cls(
            name=str(d.get("node", "")),
            cpu=_num(d, "cpu", float, 0.0),
            max_cpu=_num(d, "maxcpu", int),
            mem=_num(d, "mem", int),
            max_mem=_num(d, "maxmem", int),
        )


@dataclass(frozen=True)
class VirtualMachine:
    """A QEMU guest; `node` is the host it was listed under."""

    vmid: int
    name: str = ""
    node: str = ""
    status: str = ""
    cpu: float = 0.0
    cpus: int = 0
    mem: int = 0
    max_mem: int = 0

    @property
    def running(self) -> bool:
        return self.status == "running"

    @classmethod
    def from_api(cls, d: Mapping[str, Any], node: str = "") -> "VirtualMachine":
        return cls(
            vmid=int(d["vmid"]),
            name=str(d.get("name", "") or ""),
            node=node or str(d.get("node", "") or ""),
            status=str(d.get("status", "") or ""),
            cpu=_num(d, "cpu", float, 0.0),
            cpus=_num(d, "cpus", int),
            mem=_num(d, "mem", int),
            max_mem=_num(d, "maxmem", int),
        )


@dataclass(frozen=True)
class MigrationRequest:
    vmid: int
    name: str
    source_node: str
    target_node: str

    def describe(self) -> str:
        return f"VM{self.vmid} {self.source_node} → {self.target_node}"


@dataclass(frozen=True)
class MigrationTargetSet:
    allowed_nodes: List[str] = field(default_factory=list)
    running: int = 0

    @classmethod
    def from_api(cls, d: Mapping[str, Any]) -> "MigrationTargetSet":
        return cls(
            allowed_nodes=[str(n) for n in (d.get("allowed_nodes") or [])],
            running=_num(d, "running", int),
        )


@dataclass
class Inventory:
    """Result of a whole-cluster fetch; hosts whose VM listing failed are named in `warnings`."""

    hosts: List[Host] = field(default_factory=list)
    vms: List[VirtualMachine] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def vms_on(self, node: str) -> List[VirtualMachine]:
        return [vm for vm in self.vms if vm.node == node]
