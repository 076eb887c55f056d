"""EBS snapshot model and AMI back-reference discovery."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

# EC2 writes the AMI id into the description of every snapshot it creates
# for an image, e.g. "Created by CreateImage(i-0abc) for ami-0123 from vol-..."
# or "Copied for DestinationAmi ami-0123 from SourceAmi ami-0456 ...".
IMAGE_ID_PATTERN = re.compile(r"ami-[0-9a-f]+")


def extract_image_id(description: Optional[str]) -> Optional[str]:
    """Return the first AMI id embedded in a snapshot description."""
    if not description:
        return None
    match = IMAGE_ID_PATTERN.search(description)
    return match.group(0) if match else None


@dataclass
class Snapshot:
    """An EBS snapshot that may belong to a backup AMI.

    Attributes:
        snapshot_id: Snapshot id (snap-...)
        region: Region the snapshot lives in
        description: Free-text description set by EC2
        image_id: AMI referenced by the description (None when unmatched)
        device_name: Device the snapshot backs in its AMI, if known
    """

    snapshot_id: str
    region: str
    description: str = ""
    image_id: Optional[str] = None
    device_name: Optional[str] = None

    @classmethod
    def from_aws(cls, region: str, data: Dict[str, Any]) -> "Snapshot":
        """Build a Snapshot from a DescribeSnapshots entry."""
        description = data.get("Description", "")
        return cls(
            snapshot_id=data["SnapshotId"],
            region=region,
            description=description,
            image_id=extract_image_id(description),
        )
