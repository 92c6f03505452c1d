# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pxm_operator/core/utils.py
from __future__ import annotations

import dataclasses
import json
import logging
from enum import Enum
from typing import Any, Optional, Tuple

from .exceptions import Fatal


def _json_default(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


class U:
    @staticmethod
    def die(logger: logging.Logger, msg: str, code: int = 1) -> None:
        logger.error(msg)
        raise Fatal(code, msg)

    @staticmethod
    def json_dump(obj: Any) -> str:
        return json.dumps(obj, indent=2, sort_keys=True, default=_json_default)

    @staticmethod
    def human_bytes(n: Optional[int]) -> str:
        if n is None:
            return "unknown"
        x = float(n)
        for unit in ["B", "KiB", "MiB", "GiB", "TiB", "PiB"]:
            if x < 1024 or unit == "PiB":
                return f"{x:.2f} {unit}" if unit != "B" else f"{int(x)} {unit}"
            x /= 1024
        return f"{n} B"

    @staticmethod
    def percent(ratio: float) -> str:
        return f"{ratio * 100:.2f}%"

    @staticmethod
    def split_host_port(value: str, default_port: Optional[int] = None) -> Tuple[str, int]:
        """
        Parse "host:port", "[v6]:port" or bare "host" (needs default_port).
        """
        s = (value or "").strip()
        if not s:
            raise ValueError("empty host:port")

        if s.startswith("["):
            end = s.find("]")
            if end < 0:
                raise ValueError(f"unterminated IPv6 bracket: {value!r}")
            host, rest = s[1:end], s[end + 1:]
            port_s = rest[1:] if rest.startswith(":") else ""
        elif s.count(":") == 1:
            host, port_s = s.split(":", 1)
        else:
            host, port_s = s, ""

        if not port_s:
            if default_port is None:
                raise ValueError(f"missing port in {value!r}")
            return host, default_port

        try:
            port = int(port_s)
        except ValueError:
            raise ValueError(f"invalid port in {value!r}") from None
        return host, port
