from .sweep import STUCK_JOB_ERROR, MaintenanceSweep

__all__ = ["STUCK_JOB_ERROR", "MaintenanceSweep"]
