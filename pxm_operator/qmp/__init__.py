# pxm_operator/qmp/__init__.py
from .dirty_rate import DirtyRatePolicy, DirtyRateWorkflow, measure_dirty_rate
from .models import DirtyRateMeasurement, DirtyRateStatus, QMPCommand, QMPGreeting, QMPReply
from .session import QMPSession

__all__ = [
    "DirtyRateMeasurement",
    "DirtyRatePolicy",
    "DirtyRateStatus",
    "DirtyRateWorkflow",
    "QMPCommand",
    "QMPGreeting",
    "QMPReply",
    "QMPSession",
    "measure_dirty_rate",
]
