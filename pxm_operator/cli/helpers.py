# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pxm_operator/cli/helpers.py
from __future__ import annotations

import argparse
import os
from typing import Any, Dict, Optional

ENV_PROXMOX_URL = "PROXMOX_URL"
ENV_PROXMOX_TOKEN = "PROXMOX_TOKEN"


def _require(v: Any) -> bool:
    """True if v is meaningfully present (treats empty/whitespace-only strings as missing)."""
    if v is None:
        return False
    if isinstance(v, str):
        return v.strip() != ""
    return True


def _merged_get(args: argparse.Namespace, conf: Dict[str, Any], key: str) -> Any:
    """Prefer CLI value if present (non-empty), else config."""
    v = getattr(args, key, None)
    if _require(v):
        return v
    return conf.get(key)


def _merged_secret(
    args: argparse.Namespace,
    conf: Dict[str, Any],
    value_key: str,
    env_key: str,
    fallback_env: Optional[str] = None,
) -> Optional[str]:
    """
    Resolve a secret from (CLI/YAML value) or (CLI/YAML env var name) or a
    well-known environment variable.
    Example: (proxmox_token, proxmox_token_env, PROXMOX_TOKEN)
    """
    direct = _merged_get(args, conf, value_key)
    if _require(direct):
        return str(direct)

    envname = _merged_get(args, conf, env_key)
    if _require(envname):
        return os.environ.get(str(envname))

    if fallback_env:
        return os.environ.get(fallback_env)
    return None


def _merged_url(args: argparse.Namespace, conf: Dict[str, Any]) -> Optional[str]:
    v = _merged_get(args, conf, "proxmox_url")
    if _require(v):
        return str(v).strip()
    return os.environ.get(ENV_PROXMOX_URL)
