"""Use cases layer - Business logic orchestration.

Use cases coordinate domain entities and ports to perform operations.
They contain no infrastructure code.
"""

from .health_check import HealthCheckUseCase
from .jobs import SyncJobRunner
from .reconcile import ReconcileObjectsUseCase

__all__ = [
    "HealthCheckUseCase",
    "ReconcileObjectsUseCase",
    "SyncJobRunner",
]
