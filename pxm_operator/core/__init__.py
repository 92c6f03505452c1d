# pxm_operator/core/__init__.py
from .exceptions import (
    Fatal,
    MeasurementIncomplete,
    MigrationRejected,
    ProxmoxAPIError,
    PxmOperatorError,
    QMPConnectionError,
    QMPProtocolError,
)
from .logger import Log

__all__ = [
    "Fatal",
    "Log",
    "MeasurementIncomplete",
    "MigrationRejected",
    "ProxmoxAPIError",
    "PxmOperatorError",
    "QMPConnectionError",
    "QMPProtocolError",
]
