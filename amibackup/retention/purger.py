"""Purge executor.

Deregisters the AMIs selected by a purge plan and deletes their dependent EBS
snapshots, with retry for transient failures, per-item error isolation and a
dry-run mode.
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional

from ..aws.resource_api import ResourceAPI
from ..catalog.reader import CatalogReader
from ..errors import RemoteError, TransientRemoteError
from ..models.image import Image
from ..models.purge_operation import OperationMode, PurgeOperation
from ..models.purge_record import PurgeRecord, PurgeStatus, ResourceKind
from ..models.snapshot import Snapshot
from .audit import AuditStorage
from .evaluator import PurgePlan

logger = logging.getLogger(__name__)

# Resource already gone: count the deletion as done
NOT_FOUND_CODES = frozenset({"InvalidAMIID.NotFound", "InvalidAMIID.Unavailable", "InvalidSnapshot.NotFound"})

# A snapshot stays "in use" for a short while after its AMI is deregistered
RETRYABLE_CODES = frozenset({"InvalidSnapshot.InUse"})


class PurgeExecutor:
    """Purge orchestrator for one region at a time.

    Processes images in ascending id order. A failure on one image or
    snapshot is logged and recorded, and processing continues; the returned
    operation's ``had_errors`` tells the caller whether anything failed.

    Attributes:
        api: Remote resource API
        catalog: Catalog reader used to discover dependent snapshots
        dry_run: Log actions without performing any mutating call
        audit_storage: Optional audit log storage
        max_retries: Attempts per deletion for retryable failures
    """

    def __init__(
        self,
        api: ResourceAPI,
        dry_run: bool = False,
        audit_storage: Optional[AuditStorage] = None,
        max_retries: int = 3,
    ) -> None:
        """Initialize purge executor.

        Args:
            api: Remote resource API
            dry_run: Dry-run mode (default: False)
            audit_storage: Audit storage for operation logs (optional)
            max_retries: Maximum number of attempts per deletion (default: 3)

        Raises:
            ValueError: If max_retries is less than 1
        """
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")
        self.api = api
        self.catalog = CatalogReader(api)
        self.dry_run = dry_run
        self.audit_storage = audit_storage
        self.max_retries = max_retries

    def execute(
        self,
        region: str,
        plan: PurgePlan,
        images: Optional[Mapping[str, Image]] = None,
        name: Optional[str] = None,
    ) -> PurgeOperation:
        """Purge the images in ``plan`` and their snapshots.

        Args:
            region: AWS region
            plan: Purge plan from the retention evaluator
            images: Known images by id, used for device names and log detail (optional)
            name: Name tag or pattern this purge is scoped to (optional)

        Returns:
            PurgeOperation with one record per image and snapshot

        Raises:
            RemoteError: If the snapshot listing needed for discovery fails
        """
        known = dict(images or {})
        operation = PurgeOperation(
            operation_id=f"op_{uuid.uuid4()}",
            region=region,
            timestamp=datetime.now(timezone.utc),
            mode=OperationMode.DRY_RUN if self.dry_run else OperationMode.EXECUTE,
            images_total=len(plan.purge_ids),
            kept_images=plan.kept_ids,
            name=name,
        )

        self._log_survivors(region, plan, known)

        if plan.purge_ids:
            targets = [known.get(image_id) or Image(image_id=image_id, region=region) for image_id in plan.purge_ids]
            snapshots_by_image = self.catalog.find_snapshots(region, targets)

            for image_id in sorted(plan.purge_ids):
                self._purge_image(operation, region, known.get(image_id), image_id, snapshots_by_image.get(image_id, []))
        else:
            logger.debug(f"Nothing to purge in {region}")

        operation.finalize(datetime.now(timezone.utc))
        operation.validate()

        if self.audit_storage is not None:
            self.audit_storage.log_operation(operation)

        return operation

    def _log_survivors(self, region: str, plan: PurgePlan, known: Dict[str, Image]) -> None:
        for decision in plan.decisions:
            if decision.survivor in plan.purge_ids:
                continue
            prefix = "Would keep" if self.dry_run else "Keeping"
            logger.info(
                f"{prefix} AMI {decision.survivor}{self._when(known.get(decision.survivor))} in {region} "
                f"(oldest in {decision.slice_start:%Y-%m-%d %H:%M:%S} -> {decision.slice_end:%Y-%m-%d %H:%M:%S}, "
                f"window {decision.window.spec})"
            )

    @staticmethod
    def _when(image: Optional[Image]) -> str:
        if image is None or image.backup_timestamp is None:
            return ""
        return f" @ {image.backup_timestamp:%Y-%m-%d %H:%M:%S}"

    def _purge_image(
        self,
        operation: PurgeOperation,
        region: str,
        image: Optional[Image],
        image_id: str,
        snapshots: List[Snapshot],
    ) -> None:
        if self.dry_run:
            logger.info(f"Would deregister AMI {image_id}{self._when(image)} in {region}")
            operation.records.append(self._record(operation, image_id, ResourceKind.IMAGE, PurgeStatus.DRY_RUN))
            for snapshot in snapshots:
                logger.info(
                    f"Would delete snapshot {snapshot.snapshot_id} ({snapshot.device_name or 'unknown device'}) "
                    f"of AMI {image_id}"
                )
                operation.records.append(
                    self._record(
                        operation,
                        snapshot.snapshot_id,
                        ResourceKind.SNAPSHOT,
                        PurgeStatus.DRY_RUN,
                        parent_image_id=image_id,
                        device_name=snapshot.device_name,
                    )
                )
            return

        error = self._delete(lambda: self.api.deregister_image(region, image_id), f"AMI {image_id}")
        if error is not None:
            logger.error(f"Failed to deregister AMI {image_id} in {region}: {error}")
            operation.records.append(
                self._record(
                    operation,
                    image_id,
                    ResourceKind.IMAGE,
                    PurgeStatus.FAILED,
                    error_code=error.code or "Unknown",
                    error_message=str(error),
                )
            )
            # Snapshots of a registered AMI cannot be deleted
            return

        logger.info(f"Pruned old AMI {image_id}{self._when(image)} in {region}")
        operation.records.append(self._record(operation, image_id, ResourceKind.IMAGE, PurgeStatus.SUCCEEDED))

        for snapshot in snapshots:
            error = self._delete(
                lambda: self.api.delete_snapshot(region, snapshot.snapshot_id),
                f"snapshot {snapshot.snapshot_id}",
            )
            if error is not None:
                logger.error(f"Failed to delete snapshot {snapshot.snapshot_id} of AMI {image_id}: {error}")
                operation.records.append(
                    self._record(
                        operation,
                        snapshot.snapshot_id,
                        ResourceKind.SNAPSHOT,
                        PurgeStatus.FAILED,
                        parent_image_id=image_id,
                        device_name=snapshot.device_name,
                        error_code=error.code or "Unknown",
                        error_message=str(error),
                    )
                )
                continue

            logger.info(f"Deleted snapshot: {snapshot.snapshot_id} ({image_id})")
            operation.records.append(
                self._record(
                    operation,
                    snapshot.snapshot_id,
                    ResourceKind.SNAPSHOT,
                    PurgeStatus.SUCCEEDED,
                    parent_image_id=image_id,
                    device_name=snapshot.device_name,
                )
            )

    def _delete(self, call, label: str) -> Optional[RemoteError]:
        """Run a deletion call with retries.

        Args:
            call: Zero-argument callable performing the deletion
            label: Resource label for log messages

        Returns:
            None on success (or if already deleted), the last error otherwise
        """
        error: Optional[RemoteError] = None
        for attempt in range(self.max_retries):
            try:
                call()
                return None
            except RemoteError as e:
                if e.code in NOT_FOUND_CODES:
                    logger.info(f"{label} already deleted")
                    return None

                error = e
                retryable = isinstance(e, TransientRemoteError) or e.code in RETRYABLE_CODES
                if not retryable or attempt == self.max_retries - 1:
                    break

                wait_time = 2**attempt
                logger.debug(
                    f"Retrying deletion of {label} in {wait_time}s (attempt {attempt + 1}/{self.max_retries}): {e}"
                )
                time.sleep(wait_time)

        return error

    @staticmethod
    def _record(
        operation: PurgeOperation,
        resource_id: str,
        kind: ResourceKind,
        status: PurgeStatus,
        parent_image_id: Optional[str] = None,
        device_name: Optional[str] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> PurgeRecord:
        record = PurgeRecord(
            record_id=f"rec_{uuid.uuid4()}",
            operation_id=operation.operation_id,
            resource_id=resource_id,
            kind=kind,
            region=operation.region,
            timestamp=datetime.now(timezone.utc),
            status=status,
            parent_image_id=parent_image_id,
            device_name=device_name,
            error_code=error_code,
            error_message=error_message,
        )
        record.validate()
        return record
