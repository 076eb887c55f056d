"""Backup run coordinator.

Runs the purge path for every name tag and region to completion, then the
create path, and aggregates everything into a RunResult.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .aws.resource_api import ResourceAPI
from .backup.orchestrator import BackupOrchestrator
from .catalog.reader import CatalogReader
from .errors import GlobalTimeout, RemoteError, RunAborted
from .models.backup_task import BackupReport, BackupState
from .models.image import Instance
from .models.purge_operation import PurgeOperation
from .models.run_config import RunConfig
from .result import RunResult
from .retention.audit import AuditStorage
from .retention.evaluator import PurgePlan, build_inventory, evaluate
from .retention.purger import PurgeExecutor

logger = logging.getLogger(__name__)


class BackupRunner:
    """Coordinates one ``amibackup backup`` invocation.

    Attributes:
        api: Remote resource API
        config: Run configuration
        catalog: Catalog reader
        purger: Purge executor
        result: Aggregated outcomes
        operations: Purge operations performed, in order
        report: Backup report (None until the create path ran)
    """

    def __init__(
        self,
        api: ResourceAPI,
        config: RunConfig,
        audit_storage: Optional[AuditStorage] = None,
    ) -> None:
        """Initialize backup runner.

        Args:
            api: Remote resource API
            config: Run configuration
            audit_storage: Audit storage for purge logs (optional)
        """
        self.api = api
        self.config = config
        self.catalog = CatalogReader(api)
        self.purger = PurgeExecutor(api, dry_run=config.dry_run, audit_storage=audit_storage)
        self.result = RunResult()
        self.operations: List[PurgeOperation] = []
        self.report: Optional[BackupReport] = None

    def run(self) -> RunResult:
        """Purge, then back up unless ``prune_only`` is set.

        Returns:
            RunResult; CRITICAL when the create path was aborted
        """
        if self.config.windows:
            self.purge()
        else:
            logger.debug("No prune windows given, skipping purge")

        if self.config.prune_only:
            logger.info("Prune only, skipping backup")
            self.result.ok("run", self.config.source_region, "Pruning done and --prune-only specified")
        else:
            self.backup()

        return self.result

    def purge(self) -> None:
        """Apply the retention windows to every name tag in every backup region.

        Listing and deletion failures are warnings; the run continues.
        """
        for name in self.config.names:
            for region in self.config.regions:
                try:
                    images = self.catalog.list_managed_images(region, name)
                    plan = evaluate(build_inventory(images), self.config.windows)
                    operation = self.purger.execute(
                        region, plan, images={image.image_id: image for image in images}, name=name
                    )
                except RemoteError as e:
                    logger.warning(f"Error pruning old AMIs for {name} in {region}: {e}")
                    self.result.warning("purge", f"{name}@{region}", f"Error pruning old AMIs: {e}")
                    continue

                self.operations.append(operation)
                if operation.had_errors:
                    self.result.warning(
                        "purge",
                        f"{name}@{region}",
                        f"Error pruning old AMIs in {region}: {operation.failed_count} deletions failed",
                    )
                elif operation.images_deleted:
                    self.result.ok(
                        "purge", f"{name}@{region}", f"Pruned {operation.images_deleted} old AMIs in {region}"
                    )

    def find_instances(self) -> List[Instance]:
        """Resolve name tags to instances in the source region.

        A name tag without instances is a warning.

        Raises:
            RunAborted: If the listing fails or no name tag matched any instance
        """
        instances: Dict[str, Instance] = {}
        for name in self.config.names:
            try:
                matched = self.catalog.list_instances(self.config.source_region, name)
            except RemoteError as e:
                raise RunAborted(f"EC2 API DescribeInstances failed: {e}") from e
            if not matched:
                logger.warning(f"No instances with matching name tag: {name}")
                self.result.warning("backup", name, f"No instances with matching name tag: {name}")
                continue
            logger.debug(f"Found {len(matched)} instances with matching Name tag: {name}")
            for instance in matched:
                instances.setdefault(instance.instance_id, instance)

        if not instances:
            raise RunAborted(f"No instances with matching name tag: {', '.join(self.config.names)}")
        return list(instances.values())

    def backup(self) -> None:
        """Run the create path and record one outcome per instance."""
        try:
            instances = self.find_instances()
        except RunAborted as e:
            logger.error(str(e))
            self.result.critical("run", self.config.source_region, str(e))
            return

        orchestrator = BackupOrchestrator(self.api, self.config)
        try:
            self.report = orchestrator.run(instances)
        except GlobalTimeout as e:
            self.result.critical("backup", self.config.source_region, str(e))
            return

        for task in self.report.tasks:
            subject = task.instance.instance_id
            if task.state == BackupState.FAILED:
                self.result.warning("backup", subject, f"Backup of {subject} failed: {task.error}")
            elif task.copy_image_id:
                self.result.ok("backup", subject, f"Created new AMI {task.image_id} (copy {task.copy_image_id})")
            else:
                self.result.ok("backup", subject, f"Created new AMI {task.image_id}")


def cleanup_images(
    api: ResourceAPI,
    region: str,
    pattern: str,
    dry_run: bool = False,
    audit_storage: Optional[AuditStorage] = None,
) -> PurgeOperation:
    """Purge every private AMI in ``region`` whose name matches ``pattern``.

    Args:
        api: Remote resource API
        region: AWS region
        pattern: Regular expression searched for in AMI names
        dry_run: Log actions without performing them
        audit_storage: Audit storage for the purge log (optional)

    Returns:
        PurgeOperation
    """
    images = CatalogReader(api).list_images_by_name(region, pattern)
    plan = PurgePlan(purge_ids=frozenset(image.image_id for image in images))
    purger = PurgeExecutor(api, dry_run=dry_run, audit_storage=audit_storage)
    return purger.execute(region, plan, images={image.image_id: image for image in images}, name=pattern)
