# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pxm_operator/proxmox/client.py
"""
Proxmox VE REST client: node/VM inventory, migration targets, start migration.

Every call is a single request; there is no retry. Authentication uses an API
token sent as `Authorization: PVEAPIToken=<user>@<realm>!<id>=<secret>`.
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional
from urllib.parse import quote

import requests
import requests.adapters
import urllib3

from ..config.settings import ProxmoxConfig
from ..core.exceptions import MigrationRejected, ProxmoxAPIError
from ..core.logger import Log
from ..core.logging_utils import safe_logger
from .models import Host, Inventory, MigrationRequest, MigrationTargetSet, VirtualMachine

MIGRATION_OK_STATUS = 200


class ProxmoxClient:
    """
    Notes:
      - Uses a requests Session for pooling; one client per thread.
      - `session` can be injected for tests.
    """

    def __init__(
        self,
        config: ProxmoxConfig,
        *,
        logger: Optional[logging.Logger] = None,
        session: Optional[Any] = None,
    ) -> None:
        self.config = config
        self.logger = safe_logger(logger)
        self._session = session
        self._disable_tls_warnings()

    def _disable_tls_warnings(self) -> None:
        if not self.config.insecure:
            return
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        Log.warn(self.logger, "TLS certificate verification is DISABLED for the Proxmox API", url=self.config.base_url)

    @property
    def session(self) -> Any:
        if self._session is None:
            self._session = self._create_session()
        return self._session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.verify = self.config.verify
        session.headers.update({"Authorization": f"PVEAPIToken={self.config.token}"})

        adapter = requests.adapters.HTTPAdapter(pool_connections=4, pool_maxsize=16, max_retries=0)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> "ProxmoxClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    def _url(self, *parts: Any) -> str:
        path = "/".join(quote(str(p), safe="") for p in parts)
        return f"{self.config.base_url}/api2/json/{path}"

    def _request(self, method: str, url: str, **kw: Any) -> Any:
        Log.trace(self.logger, "%s %s", method, url)
        try:
            return self.session.request(method, url, timeout=self.config.timeout, **kw)
        except requests.RequestException as e:
            raise ProxmoxAPIError(f"{method} {url} failed: {e}", cause=e) from e

    def _get_json(self, *parts: Any) -> Any:
        url = self._url(*parts)
        resp = self._request("GET", url)
        status = int(getattr(resp, "status_code", 0) or 0)
        if not 200 <= status < 300:
            raise ProxmoxAPIError(f"GET {url}: status {status}: {resp.text}", status=status)
        try:
            return resp.json()
        except ValueError as e:
            raise ProxmoxAPIError(f"GET {url}: invalid JSON body: {e}", status=status, cause=e) from e

    @staticmethod
    def _data_list(body: Any, what: str) -> List[Any]:
        data = body.get("data") if isinstance(body, dict) else None
        if data is None:
            return []
        if not isinstance(data, list):
            raise ProxmoxAPIError(f"{what}: expected a list in 'data', got {type(data).__name__}")
        return data

    # ------------------------------------------------------------------
    # inventory
    # ------------------------------------------------------------------

    def get_nodes(self) -> List[Host]:
        body = self._get_json("nodes")
        try:
            return [Host.from_api(d) for d in self._data_list(body, "nodes")]
        except (KeyError, TypeError, ValueError) as e:
            raise ProxmoxAPIError(f"nodes: cannot decode node entry: {e}", cause=e) from e

    def get_node_vms(self, node: str) -> List[VirtualMachine]:
        body = self._get_json("nodes", node, "qemu")
        try:
            return [VirtualMachine.from_api(d, node=node) for d in self._data_list(body, f"nodes/{node}/qemu")]
        except (KeyError, TypeError, ValueError) as e:
            raise ProxmoxAPIError(f"nodes/{node}/qemu: cannot decode VM entry: {e}", cause=e) from e

    def get_inventory(self) -> Inventory:
        """
        Nodes plus all their VMs. A failed node listing raises; a failed VM
        listing for one node is recorded in `warnings` and that node skipped.
        """
        inv = Inventory(hosts=self.get_nodes())

        for host in inv.hosts:
            try:
                inv.vms.extend(self.get_node_vms(host.name))
            except ProxmoxAPIError as e:
                inv.warnings.append(f"Node {host.name}: {e}")
                continue

        if inv.warnings:
            Log.warn(self.logger, f"Failed to get VMs from some nodes: {inv.warnings}")
        return inv

    def get_all_vms(self) -> List[VirtualMachine]:
        return self.get_inventory().vms

    # ------------------------------------------------------------------
    # migration
    # ------------------------------------------------------------------

    def get_migration_targets(self, vmid: int, source_node: str) -> MigrationTargetSet:
        body = self._get_json("nodes", source_node, "qemu", vmid, "migrate")
        # PVE wraps the answer in {"data": {...}}; accept the bare object too.
        payload = body.get("data", body) if isinstance(body, dict) else None
        if not isinstance(payload, dict):
            raise ProxmoxAPIError(f"migrate precondition for VM{vmid}: unexpected body {body!r}")
        try:
            targets = MigrationTargetSet.from_api(payload)
        except (TypeError, ValueError) as e:
            raise ProxmoxAPIError(f"migrate precondition for VM{vmid}: {e}", cause=e) from e
        self.logger.debug("VM%s on %s: allowed targets %s (running=%d)", vmid, source_node, targets.allowed_nodes, targets.running)
        return targets

    def execute_migration(self, request: MigrationRequest) -> Optional[str]:
        """
        Start an online migration. Returns the PVE task id (UPID) when the
        body carries one. Any status other than 200 raises MigrationRejected
        with the body text untouched.
        """
        url = self._url("nodes", request.source_node, "qemu", request.vmid, "migrate")
        resp = self._request("POST", url, json={"target": request.target_node, "online": True})

        status = int(getattr(resp, "status_code", 0) or 0)
        if status != MIGRATION_OK_STATUS:
            raise MigrationRejected(status, resp.text, vmid=request.vmid, target=request.target_node)

        Log.ok(self.logger, f"Migration started: {request.describe()}")
        try:
            body = resp.json()
        except ValueError:
            return None
        data = body.get("data") if isinstance(body, dict) else None
        return data if isinstance(data, str) else None
