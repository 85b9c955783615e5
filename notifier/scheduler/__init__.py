"""Periodic queue maintenance (stalled-job recovery and cleanup)."""

from .service import MaintenanceScheduler

__all__ = [
    "MaintenanceScheduler",
]
