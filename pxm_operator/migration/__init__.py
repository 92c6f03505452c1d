# pxm_operator/migration/__init__.py
from .planner import DirtyRateGate, MigrationPlanEntry, MigrationPlanner, PlanState

__all__ = ["DirtyRateGate", "MigrationPlanEntry", "MigrationPlanner", "PlanState"]
