# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pxm_operator/config/settings.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from ..core.utils import U

DEFAULT_QMP_PORT = 4444


@dataclass(frozen=True)
class ProxmoxConfig:
    """
    Management API connection settings.

    `insecure=True` turns off TLS certificate verification. It is off by
    default and must be asked for explicitly (config key or --insecure).
    """
    base_url: str
    token: str
    insecure: bool = False
    timeout: float = 30.0
    ca_bundle: Optional[str] = None

    def __post_init__(self) -> None:
        url = (self.base_url or "").strip().rstrip("/")
        if not url:
            raise ValueError("ProxmoxConfig.base_url must not be empty")
        if not url.startswith(("http://", "https://")):
            raise ValueError(f"ProxmoxConfig.base_url must be http(s)://... (got {self.base_url!r})")
        object.__setattr__(self, "base_url", url)

        token = (self.token or "").strip()
        if not token:
            raise ValueError("ProxmoxConfig.token must not be empty")
        object.__setattr__(self, "token", token)

        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0 (got {self.timeout})")

    @property
    def verify(self) -> Any:
        if self.insecure:
            return False
        return self.ca_bundle or True

    def describe(self) -> str:
        parts = [self.base_url, f"timeout={self.timeout:g}s"]
        parts.append("tls=INSECURE" if self.insecure else "tls=verify")
        return " ".join(parts)


@dataclass(frozen=True)
class QMPEndpoint:
    """Where a VM's QMP monitor listens (TCP)."""
    host: str
    port: int = DEFAULT_QMP_PORT
    connect_timeout: float = 10.0
    read_timeout: float = 60.0

    def __post_init__(self) -> None:
        host = (self.host or "").strip()
        if not host:
            raise ValueError("QMPEndpoint.host must not be empty")
        object.__setattr__(self, "host", host)

        if self.port <= 0 or self.port > 65535:
            raise ValueError(f"Invalid QMP port: {self.port}")
        for name, v in (("connect_timeout", self.connect_timeout), ("read_timeout", self.read_timeout)):
            if v <= 0:
                raise ValueError(f"{name} must be > 0 (got {v})")

    @classmethod
    def parse(cls, value: str, **kw: Any) -> "QMPEndpoint":
        host, port = U.split_host_port(value, default_port=DEFAULT_QMP_PORT)
        return cls(host=host, port=port, **kw)

    def describe(self) -> str:
        return f"{self.host}:{self.port}"


def parse_qmp_endpoints(raw: Optional[Mapping[Any, Any]], **kw: Any) -> Dict[int, QMPEndpoint]:
    """
    Build {vmid: QMPEndpoint} from a config mapping such as
    {100: "10.0.0.5:4444", "101": "pve2:4445"}.
    """
    out: Dict[int, QMPEndpoint] = {}
    for k, v in (raw or {}).items():
        try:
            vmid = int(k)
        except (TypeError, ValueError):
            raise ValueError(f"qmp_endpoints key must be a VM id (got {k!r})") from None
        out[vmid] = QMPEndpoint.parse(str(v), **kw)
    return out
