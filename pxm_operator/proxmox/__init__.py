# pxm_operator/proxmox/__init__.py
from .client import ProxmoxClient
from .models import Host, Inventory, MigrationRequest, MigrationTargetSet, VirtualMachine

__all__ = ["Host", "Inventory", "MigrationRequest", "MigrationTargetSet", "ProxmoxClient", "VirtualMachine"]
