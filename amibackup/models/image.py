"""AMI and EC2 instance models."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

# Provenance tag keys written on every backup AMI
TAG_HOSTNAME = "hostname"
TAG_INSTANCE = "instance"
TAG_DATE = "date"
TAG_TIMESTAMP = "timestamp"
TAG_SOURCE_REGION = "sourceregion"

TIMESTAMP_PATTERN = re.compile(r"-?\d+")


class ImageState(Enum):
    """Lifecycle state of an AMI."""

    CREATING = "creating"
    AVAILABLE = "available"
    DEREGISTERED = "deregistered"
    FAILED = "failed"

    @classmethod
    def from_aws(cls, state: str) -> "ImageState":
        """Map an EC2 image state string onto an ImageState.

        Args:
            state: EC2 ``State`` value (pending, available, failed, ...)

        Returns:
            Matching ImageState
        """
        mapping = {
            "pending": cls.CREATING,
            "transient": cls.CREATING,
            "available": cls.AVAILABLE,
            "deregistered": cls.DEREGISTERED,
            "disabled": cls.DEREGISTERED,
        }
        return mapping.get(state, cls.FAILED)


def tags_to_dict(tags: Optional[list]) -> Dict[str, str]:
    """Convert an AWS ``[{"Key": k, "Value": v}]`` tag list to a dict."""
    return {tag["Key"]: tag.get("Value", "") for tag in tags or []}


def decode_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Decode an integer-seconds timestamp tag.

    Args:
        value: Raw tag value

    Returns:
        UTC datetime, or None if the value is missing or not an integer
    """
    if not value or not TIMESTAMP_PATTERN.fullmatch(value):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


@dataclass
class Image:
    """A backup AMI.

    The backup timestamp always comes from the ``timestamp`` tag written when
    the backup was taken, never from the provider's CreationDate.

    Attributes:
        image_id: AMI id (ami-...)
        region: Region the AMI lives in
        name: Logical name, from the ``hostname`` tag
        instance_id: Instance the backup was taken from, from the ``instance`` tag
        backup_timestamp: Decoded ``timestamp`` tag (None for unmanaged images)
        state: Lifecycle state
        ami_name: EC2 image Name
        source_region: Region the AMI was copied from (copies only)
        block_devices: Snapshot id -> device name from the block device mappings
        tags: All tags on the image
    """

    image_id: str
    region: str
    name: str = ""
    instance_id: str = ""
    backup_timestamp: Optional[datetime] = None
    state: ImageState = ImageState.AVAILABLE
    ami_name: str = ""
    source_region: Optional[str] = None
    block_devices: Dict[str, str] = field(default_factory=dict)
    tags: Dict[str, str] = field(default_factory=dict)

    @property
    def is_managed(self) -> bool:
        """Whether the image carries a valid backup timestamp."""
        return self.backup_timestamp is not None

    @classmethod
    def from_aws(cls, region: str, data: Dict[str, Any]) -> "Image":
        """Build an Image from a DescribeImages entry.

        Args:
            region: Region the image was listed in
            data: One element of the DescribeImages ``Images`` list

        Returns:
            Image (unmanaged if the timestamp tag is missing or corrupt)
        """
        tags = tags_to_dict(data.get("Tags"))
        block_devices = {}
        for mapping in data.get("BlockDeviceMappings", []):
            snapshot_id = mapping.get("Ebs", {}).get("SnapshotId")
            if snapshot_id:
                block_devices[snapshot_id] = mapping.get("DeviceName", "")

        return cls(
            image_id=data["ImageId"],
            region=region,
            name=tags.get(TAG_HOSTNAME, ""),
            instance_id=tags.get(TAG_INSTANCE, ""),
            backup_timestamp=decode_timestamp(tags.get(TAG_TIMESTAMP)),
            state=ImageState.from_aws(data.get("State", "available")),
            ami_name=data.get("Name", ""),
            source_region=tags.get(TAG_SOURCE_REGION),
            block_devices=block_devices,
            tags=tags,
        )


@dataclass
class Instance:
    """An EC2 instance selected for backup by its Name tag."""

    instance_id: str
    region: str
    name: str = ""
    state: str = "running"

    @classmethod
    def from_aws(cls, region: str, data: Dict[str, Any]) -> "Instance":
        """Build an Instance from a DescribeInstances entry."""
        tags = tags_to_dict(data.get("Tags"))
        return cls(
            instance_id=data["InstanceId"],
            region=region,
            name=tags.get("Name", ""),
            state=data.get("State", {}).get("Name", "unknown"),
        )
