"""Tests for AuditStorage.

Test coverage for purge audit log storage and retrieval in YAML format.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
import yaml

from amibackup.models.purge_operation import OperationMode, OperationStatus, PurgeOperation
from amibackup.models.purge_record import PurgeRecord, PurgeStatus, ResourceKind
from amibackup.retention.audit import AuditStorage


def make_operation(operation_id: str = "op_123", month: int = 6) -> PurgeOperation:
    timestamp = datetime(2024, month, 1, 12, 0, 0, tzinfo=timezone.utc)
    operation = PurgeOperation(
        operation_id=operation_id,
        region="us-east-1",
        timestamp=timestamp,
        mode=OperationMode.EXECUTE,
        images_total=1,
        kept_images=["ami-keep"],
        name="web",
    )
    operation.records = [
        PurgeRecord(
            record_id="rec_1",
            operation_id=operation_id,
            resource_id="ami-old",
            kind=ResourceKind.IMAGE,
            region="us-east-1",
            timestamp=timestamp,
            status=PurgeStatus.SUCCEEDED,
        ),
        PurgeRecord(
            record_id="rec_2",
            operation_id=operation_id,
            resource_id="snap-old",
            kind=ResourceKind.SNAPSHOT,
            region="us-east-1",
            timestamp=timestamp,
            status=PurgeStatus.FAILED,
            parent_image_id="ami-old",
            device_name="/dev/sda1",
            error_code="InvalidSnapshot.InUse",
            error_message="snapshot is in use",
        ),
    ]
    operation.finalize(timestamp)
    return operation


class TestAuditStorage:
    """Test suite for AuditStorage class."""

    @pytest.fixture
    def audit_storage(self, tmp_path: Path) -> AuditStorage:
        """Create AuditStorage instance with temp directory."""
        return AuditStorage(storage_dir=str(tmp_path / "audit-logs"))

    def test_init_creates_storage_directory(self, tmp_path: Path) -> None:
        """Test initialization creates the directory if missing."""
        storage_dir = tmp_path / "nested" / "audit-logs"
        assert not storage_dir.exists()

        AuditStorage(storage_dir=str(storage_dir))

        assert storage_dir.is_dir()

    def test_log_operation_writes_year_month_file(self, audit_storage: AuditStorage) -> None:
        """Test the log lands under <year>/<month>/operation-<id>.yaml."""
        path = audit_storage.log_operation(make_operation())

        assert path == audit_storage.storage_dir / "2024" / "06" / "operation-op_123.yaml"
        with open(path) as f:
            data = yaml.safe_load(f)

        assert data["metadata"]["log_type"] == "ami_purge"
        assert data["operation"]["status"] == OperationStatus.PARTIAL.value
        assert data["operation"]["images_deleted"] == 1
        assert data["operation"]["failed_count"] == 1
        assert data["operation"]["kept_images"] == ["ami-keep"]
        assert data["records"][1]["kind"] == "snapshot"
        assert data["records"][1]["parent_image_id"] == "ami-old"
        assert data["records"][1]["error_code"] == "InvalidSnapshot.InUse"

    def test_get_operation(self, audit_storage: AuditStorage) -> None:
        """Test retrieving a logged operation by id."""
        audit_storage.log_operation(make_operation("op_abc"))

        data = audit_storage.get_operation("op_abc")

        assert data is not None
        assert data["operation"]["operation_id"] == "op_abc"

    def test_get_operation_not_found(self, audit_storage: AuditStorage) -> None:
        """Test missing operations return None."""
        assert audit_storage.get_operation("op_missing") is None

    def test_list_operations_in_directory_order(self, audit_storage: AuditStorage) -> None:
        """Test every stored log is returned, oldest month first."""
        audit_storage.log_operation(make_operation("op_june", month=6))
        audit_storage.log_operation(make_operation("op_may", month=5))

        ids = [log["operation"]["operation_id"] for log in audit_storage.list_operations()]

        assert ids == ["op_may", "op_june"]
