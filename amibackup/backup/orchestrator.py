"""Backup orchestrator.

Creates an AMI from every target instance, waits for it to become available,
copies it to the destination region and tags both images with provenance
metadata. One task per instance runs concurrently under a single deadline.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Dict, Optional, Sequence

from ..aws.resource_api import ResourceAPI
from ..errors import GlobalTimeout, RemoteError, TransientRemoteError
from ..models.backup_task import BackupReport, BackupState, BackupTask
from ..models.image import (
    TAG_DATE,
    TAG_HOSTNAME,
    TAG_INSTANCE,
    TAG_SOURCE_REGION,
    TAG_TIMESTAMP,
    ImageState,
    Instance,
)
from ..models.run_config import RunConfig

logger = logging.getLogger(__name__)

NAME_TIME_FORMAT = "%Y-%m-%d_%H-%M-%S"
DATE_TAG_FORMAT = "%Y-%m-%d %H:%M:%S %z"


class ImageFailedError(RemoteError):
    """An image entered a failed or deregistered state while being waited on."""


def image_name(name_tag: str, when: datetime, resource_id: str) -> str:
    """AMI name: ``<tag>-<YYYY-MM-DD_HH-MM-SS>-<resource id>``."""
    return f"{name_tag}-{when.strftime(NAME_TIME_FORMAT)}-{resource_id}"


def image_description(name_tag: str, when: datetime, resource_id: str) -> str:
    """AMI description: ``<tag> <date> <resource id>``."""
    return f"{name_tag} {when.strftime(DATE_TAG_FORMAT)} {resource_id}"


def provenance_tags(instance: Instance, when: datetime, source_region: Optional[str] = None) -> Dict[str, str]:
    """Tags written on every backup AMI.

    Args:
        instance: Instance the backup was taken from
        when: Backup instant
        source_region: Region the image was copied from (copies only)

    Returns:
        Tag key -> value
    """
    tags = {
        TAG_HOSTNAME: instance.name,
        TAG_INSTANCE: instance.instance_id,
        TAG_DATE: when.strftime(DATE_TAG_FORMAT),
        TAG_TIMESTAMP: str(int(when.timestamp())),
    }
    if source_region:
        tags[TAG_SOURCE_REGION] = source_region
    return tags


class BackupOrchestrator:
    """Runs one backup task per instance against a single global deadline.

    Tasks share nothing but the remote API and a cancellation event. A
    failure in one task moves only that task to FAILED. Tasks run on
    daemon threads. If the deadline expires first, the event is set and
    ``GlobalTimeout`` is raised with the operations still pending. Remote
    calls already in flight are abandoned and never hold up process exit.

    Attributes:
        api: Remote resource API
        config: Run configuration
    """

    def __init__(self, api: ResourceAPI, config: RunConfig) -> None:
        """Initialize backup orchestrator.

        Args:
            api: Remote resource API
            config: Run configuration (regions, timeout, poll interval, ...)
        """
        self.api = api
        self.config = config

    def run(self, instances: Sequence[Instance]) -> BackupReport:
        """Back up every instance.

        Args:
            instances: Instances to back up

        Returns:
            BackupReport with one task per instance

        Raises:
            GlobalTimeout: If the deadline expires before every task finished
        """
        deadline = time.monotonic() + self.config.timeout
        report = BackupReport(
            tasks=[
                BackupTask(
                    instance=instance,
                    source_region=self.config.source_region,
                    dest_region=self.config.dest_region,
                )
                for instance in instances
            ]
        )
        if not report.tasks:
            return report

        cancel = threading.Event()
        threads = [
            threading.Thread(
                target=self._run_guarded,
                args=(task, cancel),
                name=f"amibackup-{task.instance.instance_id}",
                daemon=True,
            )
            for task in report.tasks
        ]
        for thread in threads:
            thread.start()

        for thread in threads:
            thread.join(max(deadline - time.monotonic(), 0))

        if any(thread.is_alive() for thread in threads):
            cancel.set()
            pending = report.pending
            logger.error(f"Timeout after {self.config.timeout:g}s with {len(pending)} AMIs pending")
            raise GlobalTimeout(self.config.timeout, pending)

        logger.debug(f"Backup finished: {len(report.succeeded)} succeeded, {len(report.failed)} failed")
        return report

    def _run_guarded(self, task: BackupTask, cancel: threading.Event) -> None:
        try:
            self._run_task(task, cancel)
        except Exception as e:
            self._fail(task, f"Unexpected error: {e}")

    def _run_task(self, task: BackupTask, cancel: threading.Event) -> None:
        task.started_at = datetime.now(timezone.utc)
        try:
            self._create(task, cancel)
            if task.needs_copy and task.state == BackupState.CREATED:
                self._copy(task, cancel)
        except RemoteError as e:
            self._fail(task, str(e))
            return

        if task.finished:
            task.completed_at = datetime.now(timezone.utc)

    def _create(self, task: BackupTask, cancel: threading.Event) -> None:
        instance = task.instance
        when = self.config.invoked_at

        task.state = BackupState.CREATING
        task.image_id = self.api.create_image(
            task.source_region,
            instance.instance_id,
            image_name(instance.name, when, instance.instance_id),
            image_description(instance.name, when, instance.instance_id),
            no_reboot=True,
            excluded_devices=self.config.ignored_devices,
        )
        logger.info(f"Creating new AMI {task.image_id} for {instance.name} ({instance.instance_id})")

        self.api.tag_resources(task.source_region, [task.image_id], provenance_tags(instance, when))

        task.state = BackupState.WAIT_CREATE
        if self._wait_available(task.source_region, task.image_id, cancel):
            task.state = BackupState.CREATED
            logger.info(f"Created new AMI {task.image_id}")

    def _copy(self, task: BackupTask, cancel: threading.Event) -> None:
        instance = task.instance
        when = self.config.invoked_at

        task.state = BackupState.COPYING
        task.copy_image_id = self.api.copy_image(
            task.source_region,
            task.dest_region,
            task.image_id,
            image_name(instance.name, when, task.image_id),
            image_description(instance.name, when, task.image_id),
            encrypted=self.config.encrypt,
            kms_key_id=self.config.kms_key_id,
        )
        logger.info(
            f"Started copy of {instance.name} from {task.source_region} ({task.image_id}) "
            f"to {task.dest_region} ({task.copy_image_id})"
        )

        self.api.tag_resources(
            task.dest_region,
            [task.copy_image_id],
            provenance_tags(instance, when, source_region=task.source_region),
        )

        task.state = BackupState.WAIT_COPY
        if self._wait_available(task.dest_region, task.copy_image_id, cancel):
            task.state = BackupState.REPLICATED
            logger.info(f"Copied AMI {task.image_id} to {task.dest_region} as {task.copy_image_id}")

    def _wait_available(self, region: str, image_id: str, cancel: threading.Event) -> bool:
        """Poll an image until it is available.

        Returns:
            True once available, False if cancelled first

        Raises:
            ImageFailedError: If the image fails or disappears
            TerminalRemoteError: If polling fails for good
        """
        while not cancel.is_set():
            try:
                states = self.api.describe_image_states(region, [image_id])
            except TransientRemoteError as e:
                logger.debug(f"Polling {image_id} failed, retrying: {e}")
            else:
                state = ImageState.from_aws(states.get(image_id, "pending"))
                if state == ImageState.AVAILABLE:
                    return True
                if state in (ImageState.FAILED, ImageState.DEREGISTERED):
                    raise ImageFailedError(
                        f"AMI {image_id} entered state {states[image_id]} in {region}",
                        "DescribeImages",
                        region,
                    )
                logger.debug(f"AMI {image_id} is {states.get(image_id, 'pending')}, sleeping {self.config.poll_interval:g}s")

            cancel.wait(self.config.poll_interval)
        return False

    @staticmethod
    def _fail(task: BackupTask, message: str) -> None:
        task.state = BackupState.FAILED
        task.error = message
        task.completed_at = datetime.now(timezone.utc)
        logger.error(f"Backup of {task.instance.name} ({task.instance.instance_id}) failed: {message}")

