# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pxm_operator/qmp/models.py
"""
QMP message shapes.

Commands are `{"execute": name, "arguments": {...}}` (arguments omitted when
empty); replies are `{"return": payload}` or `{"error": {"class", "desc"}}`.
Each call site decodes the success payload into its own type.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from ..core.exceptions import QMPConnectionError, QMPProtocolError


@dataclass(frozen=True)
class QMPGreeting:
    major: int = 0
    minor: int = 0
    micro: int = 0
    package: str = ""
    capabilities: List[str] = field(default_factory=list)

    @property
    def version(self) -> str:
        return f"{self.major}.{self.minor}.{self.micro}"

    @classmethod
    def from_message(cls, msg: Mapping[str, Any]) -> "QMPGreeting":
        qmp = msg.get("QMP")
        if not isinstance(qmp, Mapping):
            raise QMPConnectionError(f"invalid QMP greeting: {msg!r}")
        version = qmp.get("version") or {}
        qemu = version.get("qemu") or {}
        return cls(
            major=int(qemu.get("major", 0)),
            minor=int(qemu.get("minor", 0)),
            micro=int(qemu.get("micro", 0)),
            package=str(version.get("package", "") or "").strip(),
            capabilities=[str(x) for x in (qmp.get("capabilities") or [])],
        )


@dataclass(frozen=True)
class QMPCommand:
    execute: str
    arguments: Optional[Dict[str, Any]] = None

    def to_message(self) -> Dict[str, Any]:
        msg: Dict[str, Any] = {"execute": self.execute}
        if self.arguments:
            msg["arguments"] = dict(self.arguments)
        return msg


@dataclass(frozen=True)
class QMPError:
    error_class: str
    desc: str


@dataclass(frozen=True)
class QMPReply:
    """Tagged result: exactly one of `payload` (on success) or `error` is meaningful."""

    payload: Any = None
    error: Optional[QMPError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def from_message(cls, msg: Mapping[str, Any]) -> "QMPReply":
        if "error" in msg:
            err = msg.get("error") or {}
            if not isinstance(err, Mapping):
                raise QMPConnectionError(f"malformed QMP error object: {err!r}")
            return cls(error=QMPError(str(err.get("class", "")), str(err.get("desc", ""))))
        if "return" in msg:
            return cls(payload=msg.get("return"))
        raise QMPConnectionError(f"unexpected QMP message (no return/error): {msg!r}")

    def unwrap(self, command: Optional[str] = None) -> Any:
        if self.error is not None:
            raise QMPProtocolError(self.error.error_class, self.error.desc, command=command)
        return self.payload


class DirtyRateStatus(str, Enum):
    UNSTARTED = "unstarted"
    MEASURING = "measuring"
    MEASURED = "measured"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: str) -> "DirtyRateStatus":
        try:
            return cls(raw)
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class DirtyRateMeasurement:
    status: DirtyRateStatus
    raw_status: str
    dirty_rate: float = 0.0  # MB/s
    calc_time: int = 0
    calc_time_unit: str = "second"
    mode: str = ""
    sample_pages: int = 0
    start_time: int = 0

    @property
    def measured(self) -> bool:
        return self.status is DirtyRateStatus.MEASURED

    @classmethod
    def from_payload(cls, payload: Any) -> "DirtyRateMeasurement":
        if not isinstance(payload, Mapping):
            raise QMPConnectionError(f"query-dirty-rate returned a non-object payload: {payload!r}")
        raw = str(payload.get("status", "") or "")
        try:
            return cls(
                status=DirtyRateStatus.parse(raw),
                raw_status=raw,
                # dirty-rate is absent until the measurement completes
                dirty_rate=float(payload.get("dirty-rate", 0.0) or 0.0),
                calc_time=int(payload.get("calc-time", 0) or 0),
                calc_time_unit=str(payload.get("calc-time-unit", "second") or "second"),
                mode=str(payload.get("mode", "") or ""),
                sample_pages=int(payload.get("sample-pages", 0) or 0),
                start_time=int(payload.get("start-time", 0) or 0),
            )
        except (TypeError, ValueError) as e:
            raise QMPConnectionError(f"failed to parse dirty rate result: {e}", cause=e) from e
