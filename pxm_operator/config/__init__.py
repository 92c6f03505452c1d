# pxm_operator/config/__init__.py
from .config_loader import Config
from .settings import ProxmoxConfig, QMPEndpoint, parse_qmp_endpoints

__all__ = ["Config", "ProxmoxConfig", "QMPEndpoint", "parse_qmp_endpoints"]
