# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pxm_operator/config/config_loader.py
"""
YAML/JSON config files.

Several --config files merge left to right (dicts deep-merge, everything
else is replaced). The merged mapping is then applied as argparse defaults
so explicit CLI flags still win.
"""
from __future__ import annotations

import argparse
import glob
import logging
from pathlib import Path
from typing import Any, Dict, List, Sequence

import yaml

from ..core.exceptions import Fatal, wrap_fatal


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in extra.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _normalize_key(k: Any) -> Any:
    # "proxmox-url" and "proxmox_url" mean the same thing.
    return k.replace("-", "_") if isinstance(k, str) else k


class Config:
    @staticmethod
    def expand_configs(logger: logging.Logger, paths: Sequence[str]) -> List[Path]:
        """Expand globs and directories (*.yaml, *.yml, *.json inside, sorted)."""
        out: List[Path] = []
        for raw in paths:
            matches = sorted(glob.glob(str(Path(raw).expanduser()))) or [str(Path(raw).expanduser())]
            for m in matches:
                p = Path(m)
                if p.is_dir():
                    found = sorted(x for x in p.iterdir() if x.suffix in (".yaml", ".yml", ".json"))
                    logger.debug("Config dir %s: %d file(s)", p, len(found))
                    out.extend(found)
                else:
                    out.append(p)
        return out

    @staticmethod
    def load_one(logger: logging.Logger, path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise Fatal(2, f"config file not found: {path}")
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise wrap_fatal(f"cannot read config: {e}", e, code=2, path=str(path)) from e
        except yaml.YAMLError as e:
            raise wrap_fatal(f"invalid YAML in {path}: {e}", e, code=2, path=str(path)) from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise Fatal(2, f"config {path} must be a mapping at top level (got {type(data).__name__})")
        logger.debug("Loaded config %s (%d key(s))", path, len(data))
        return {_normalize_key(k): v for k, v in data.items()}

    @staticmethod
    def load_many(logger: logging.Logger, paths: Sequence[Path]) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        for p in paths:
            merged = _deep_merge(merged, Config.load_one(logger, Path(p)))
        return merged

    @staticmethod
    def apply_as_defaults(logger: logging.Logger, parser: argparse.ArgumentParser, conf: Dict[str, Any]) -> None:
        """Set parser defaults for every config key that matches an argparse dest."""
        dests = {a.dest for a in parser._actions}
        known = {k: v for k, v in conf.items() if k in dests}
        unknown = sorted(str(k) for k in conf if k not in dests)
        if unknown:
            logger.debug("Config keys without a CLI flag (read directly): %s", unknown)
        if known:
            parser.set_defaults(**known)
