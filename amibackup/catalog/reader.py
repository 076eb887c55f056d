"""Resource catalog reader.

Reconstructs a typed inventory of backup AMIs, instances and snapshots from
the remote resource API.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List

from ..aws.resource_api import ResourceAPI
from ..models.image import TAG_HOSTNAME, TAG_TIMESTAMP, Image, Instance
from ..models.snapshot import Snapshot

logger = logging.getLogger(__name__)


class CatalogReader:
    """Best-effort inventory of managed AMIs and their dependencies.

    Images without a usable ``timestamp`` tag are dropped with a debug
    diagnostic. Remote API errors propagate to the caller.
    """

    def __init__(self, api: ResourceAPI) -> None:
        """Initialize catalog reader.

        Args:
            api: Remote resource API
        """
        self.api = api

    def list_managed_images(self, region: str, hostname: str) -> List[Image]:
        """List backup AMIs tagged with ``hostname``.

        Args:
            region: AWS region
            hostname: Value of the ``hostname`` tag

        Returns:
            Images with a valid backup timestamp
        """
        raw_images = self.api.list_images(region, tag_filters={TAG_HOSTNAME: hostname})
        logger.debug(f"Found {len(raw_images)} total images for {hostname} in {region}")

        images = []
        for data in raw_images:
            image = Image.from_aws(region, data)
            if not image.is_managed:
                if TAG_TIMESTAMP in image.tags:
                    logger.debug(f"AMI timestamp tag is corrupt - skipping: {image.image_id}")
                else:
                    logger.debug(f"AMI is missing timestamp tag - skipping: {image.image_id}")
                continue
            images.append(image)

        return images

    def list_images_by_name(self, region: str, pattern: str) -> List[Image]:
        """List private AMIs whose name matches a regular expression.

        Args:
            region: AWS region
            pattern: Regular expression searched for in the AMI name

        Returns:
            Matching images (timestamp tag not required)
        """
        regex = re.compile(pattern)
        raw_images = self.api.list_images(region)
        logger.info(f"Found {len(raw_images)} total images in {region}")

        images = [Image.from_aws(region, data) for data in raw_images]
        matched = [image for image in images if regex.search(image.ami_name)]
        for image in matched:
            logger.info(f"Found: {image.ami_name} ({image.image_id})")
        logger.info(f"Found {len(matched)} matching images in {region}")
        return matched

    def list_instances(self, region: str, name_tag: str) -> List[Instance]:
        """List instances whose Name tag equals ``name_tag``.

        Terminated and shutting-down instances are skipped.
        """
        instances = []
        for data in self.api.list_instances(region, name_tag):
            instance = Instance.from_aws(region, data)
            if instance.state in ("terminated", "shutting-down"):
                logger.debug(f"Skipping {instance.state} instance {instance.instance_id}")
                continue
            instances.append(instance)
        return instances

    def find_snapshots(self, region: str, images: Iterable[Image]) -> Dict[str, List[Snapshot]]:
        """Find the snapshots that belong to the given images.

        A snapshot belongs to the first AMI id in its description, and only
        if that AMI is one of ``images``. Device names come from the AMI's
        block device mappings.

        Args:
            region: AWS region
            images: Images to find snapshots for

        Returns:
            Image id -> snapshots, sorted by snapshot id
        """
        tracked = {image.image_id: image for image in images}
        if not tracked:
            return {}

        result: Dict[str, List[Snapshot]] = {}
        for data in self.api.list_snapshots(region):
            snapshot = Snapshot.from_aws(region, data)
            image = tracked.get(snapshot.image_id or "")
            if image is None:
                continue
            snapshot.device_name = image.block_devices.get(snapshot.snapshot_id)
            result.setdefault(image.image_id, []).append(snapshot)

        for snapshots in result.values():
            snapshots.sort(key=lambda s: s.snapshot_id)
        return result
