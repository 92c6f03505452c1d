# pxm_operator/cli/__init__.py
from .commands import CommandRunner
from .parser import build_parser, parse_args_with_config

__all__ = ["CommandRunner", "build_parser", "parse_args_with_config"]
