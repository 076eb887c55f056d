"""Audit storage for purge operations.

Stores and retrieves purge audit logs in YAML format.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import yaml

from ..models.purge_operation import PurgeOperation

logger = logging.getLogger(__name__)

AUDIT_LOG_VERSION = "1.0"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class AuditStorage:
    """Audit log storage and retrieval.

    One YAML file per purge operation, organized by year/month:

        <storage_dir>/
            2024/
                06/
                    operation-op_123.yaml

    Attributes:
        storage_dir: Base directory for audit logs
    """

    def __init__(self, storage_dir: Optional[str] = None) -> None:
        """Initialize audit storage.

        Args:
            storage_dir: Base directory for audit logs (default: ~/.amibackup/audit-logs)
        """
        if storage_dir is None:
            storage_dir = str(Path.home() / ".amibackup" / "audit-logs")

        self.storage_dir = Path(storage_dir).expanduser()
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def log_operation(self, operation: PurgeOperation) -> Path:
        """Write the audit log for a purge operation.

        Overwrites an existing log with the same operation id.

        Args:
            operation: Finalized purge operation

        Returns:
            Path of the written file
        """
        year_month_dir = self.storage_dir / str(operation.timestamp.year) / f"{operation.timestamp.month:02d}"
        year_month_dir.mkdir(parents=True, exist_ok=True)

        audit_data = {
            "metadata": {
                "version": AUDIT_LOG_VERSION,
                "log_type": "ami_purge",
                "created_at": datetime.now(timezone.utc).isoformat(),
            },
            "operation": {
                "operation_id": operation.operation_id,
                "region": operation.region,
                "name": operation.name,
                "timestamp": _iso(operation.timestamp),
                "mode": operation.mode.value,
                "status": operation.status.value,
                "images_total": operation.images_total,
                "images_deleted": operation.images_deleted,
                "snapshots_deleted": operation.snapshots_deleted,
                "failed_count": operation.failed_count,
                "kept_images": list(operation.kept_images),
                "completed_at": _iso(operation.completed_at),
                "duration_seconds": operation.duration_seconds,
            },
            "records": [
                {
                    "record_id": record.record_id,
                    "resource_id": record.resource_id,
                    "kind": record.kind.value,
                    "region": record.region,
                    "timestamp": _iso(record.timestamp),
                    "status": record.status.value,
                    "parent_image_id": record.parent_image_id,
                    "device_name": record.device_name,
                    "error_code": record.error_code,
                    "error_message": record.error_message,
                }
                for record in operation.records
            ],
        }

        audit_file = year_month_dir / f"operation-{operation.operation_id}.yaml"
        with open(audit_file, "w") as f:
            yaml.dump(audit_data, f, default_flow_style=False, sort_keys=False)

        logger.debug(f"Wrote audit log {audit_file}")
        return audit_file

    def get_operation(self, operation_id: str) -> Optional[dict]:
        """Retrieve an operation audit log by id.

        Returns:
            Audit log dictionary if found, None otherwise
        """
        for audit_file in self.storage_dir.glob(f"*/*/operation-{operation_id}.yaml"):
            with open(audit_file, "r") as f:
                return yaml.safe_load(f)
        return None

    def list_operations(self) -> List[dict]:
        """Return every stored audit log, oldest directory first."""
        results = []
        for audit_file in sorted(self.storage_dir.glob("*/*/operation-*.yaml")):
            with open(audit_file, "r") as f:
                results.append(yaml.safe_load(f))
        return results
