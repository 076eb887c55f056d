"""Backup module.

Creates, replicates and tags backup AMIs.

Classes:
    BackupOrchestrator: One concurrent task per instance under a global deadline
"""

from __future__ import annotations

from .orchestrator import BackupOrchestrator

__all__ = [
    "BackupOrchestrator",
]
