"""Per-instance backup task state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from .image import Instance


class BackupState(Enum):
    """Backup task state machine.

    State transitions:
        idle → creating → wait-create → created (same region: done)
        created → copying → wait-copy → replicated
        any state → failed
    """

    IDLE = "idle"
    CREATING = "creating"
    WAIT_CREATE = "wait-create"
    CREATED = "created"
    COPYING = "copying"
    WAIT_COPY = "wait-copy"
    REPLICATED = "replicated"
    FAILED = "failed"


@dataclass(frozen=True)
class PendingOperation:
    """An image operation that had not reached a terminal state."""

    instance_id: str
    image_id: Optional[str]
    region: str
    phase: BackupState


@dataclass
class BackupTask:
    """Backup of one instance: create in the source region, copy to the destination.

    Each task is owned by exactly one worker; the orchestrator only reads it.

    Attributes:
        instance: Instance being backed up
        source_region: Region the AMI is created in
        dest_region: Region the AMI is copied to
        state: Current state
        image_id: AMI created in the source region
        copy_image_id: AMI created in the destination region
        error: Failure message when state is FAILED
        started_at: When the task left IDLE
        completed_at: When the task reached a terminal state
    """

    instance: Instance
    source_region: str
    dest_region: str
    state: BackupState = BackupState.IDLE
    image_id: Optional[str] = None
    copy_image_id: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def needs_copy(self) -> bool:
        return self.source_region != self.dest_region

    @property
    def finished(self) -> bool:
        """Whether the task reached a terminal state."""
        if self.state in (BackupState.FAILED, BackupState.REPLICATED):
            return True
        return self.state == BackupState.CREATED and not self.needs_copy

    @property
    def succeeded(self) -> bool:
        return self.finished and self.state != BackupState.FAILED

    def pending_operation(self) -> PendingOperation:
        """Describe what this task is still waiting on."""
        if self.copy_image_id is not None:
            return PendingOperation(
                instance_id=self.instance.instance_id,
                image_id=self.copy_image_id,
                region=self.dest_region,
                phase=self.state,
            )
        return PendingOperation(
            instance_id=self.instance.instance_id,
            image_id=self.image_id,
            region=self.source_region,
            phase=self.state,
        )


@dataclass
class BackupReport:
    """Outcome of one orchestrator run."""

    tasks: List[BackupTask] = field(default_factory=list)

    @property
    def succeeded(self) -> List[BackupTask]:
        return [t for t in self.tasks if t.succeeded]

    @property
    def failed(self) -> List[BackupTask]:
        return [t for t in self.tasks if t.state == BackupState.FAILED]

    @property
    def pending(self) -> List[PendingOperation]:
        return [t.pending_operation() for t in self.tasks if not t.finished]
