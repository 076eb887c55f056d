"""Purge record model.

Individual image or snapshot deletion attempt with result and metadata.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class PurgeStatus(Enum):
    """Individual deletion status."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DRY_RUN = "dry-run"


class ResourceKind(Enum):
    """Kind of resource a record refers to."""

    IMAGE = "image"
    SNAPSHOT = "snapshot"


@dataclass
class PurgeRecord:
    """Purge record entity.

    Each record belongs to a PurgeOperation and tracks the outcome for a single
    AMI or EBS snapshot.

    Validation rules:
        - status=succeeded: no error_code
        - status=failed: requires error_code
        - snapshot records require parent_image_id

    Attributes:
        record_id: Unique identifier for this record
        operation_id: Parent operation identifier
        resource_id: AMI or snapshot id
        kind: image or snapshot
        region: AWS region
        timestamp: When deletion was attempted (UTC)
        status: Deletion outcome
        parent_image_id: Owning AMI for snapshot records
        device_name: Device the snapshot backed (snapshot records, optional)
        error_code: AWS error code if failed (optional)
        error_message: Human-readable error if failed (optional)
    """

    record_id: str
    operation_id: str
    resource_id: str
    kind: ResourceKind
    region: str
    timestamp: datetime
    status: PurgeStatus
    parent_image_id: Optional[str] = None
    device_name: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def validate(self) -> bool:
        """Validate record invariants.

        Returns:
            True if validation passes

        Raises:
            ValueError: If any validation rule fails
        """
        if self.status == PurgeStatus.FAILED and not self.error_code:
            raise ValueError("Failed status requires error_code")
        if self.status == PurgeStatus.SUCCEEDED and self.error_code:
            raise ValueError("Succeeded status cannot have an error code")
        if self.kind == ResourceKind.SNAPSHOT and not self.parent_image_id:
            raise ValueError("Snapshot records require parent_image_id")
        return True
