"""Retention module.

Decides which backup AMIs fall outside the retention windows and purges them
together with their dependent EBS snapshots.

Classes:
    PurgePlan: Purge set plus the bucket decisions behind it
    PurgeExecutor: Deregisters AMIs and deletes their snapshots
    AuditStorage: Audit log storage and retrieval
"""

from __future__ import annotations

from .audit import AuditStorage
from .evaluator import PurgePlan
from .purger import PurgeExecutor

__all__ = [
    "PurgePlan",
    "PurgeExecutor",
    "AuditStorage",
]
