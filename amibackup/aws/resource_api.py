"""Remote resource API used by the catalog, purge and backup components.

``ResourceAPI`` is the capability the core depends on; ``Ec2ResourceAPI``
implements it with boto3. All methods return plain AWS-shaped dictionaries
and raise ``TransientRemoteError`` or ``TerminalRemoteError`` on failure.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError

from ..errors import RemoteError, TerminalRemoteError, TransientRemoteError
from .client import create_boto_client

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_CODES = frozenset(
    {
        "RequestLimitExceeded",
        "Throttling",
        "ThrottlingException",
        "InternalError",
        "InternalFailure",
        "ServiceUnavailable",
        "Unavailable",
    }
)

# Image ids are eventually consistent right after CreateImage/CopyImage
EVENTUALLY_CONSISTENT_CODES = frozenset({"InvalidAMIID.NotFound"})


def classify_error(
    error: Exception,
    operation: str,
    region: str,
    transient_codes: frozenset = TRANSIENT_ERROR_CODES,
) -> RemoteError:
    """Translate a botocore exception into a RemoteError.

    Args:
        error: Exception raised by botocore
        operation: API operation name
        region: Region the call was made against
        transient_codes: Error codes to treat as retryable

    Returns:
        TransientRemoteError or TerminalRemoteError
    """
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "Unknown")
        message = error.response.get("Error", {}).get("Message", str(error))
        cls = TransientRemoteError if code in transient_codes else TerminalRemoteError
        return cls(f"EC2 API {operation} failed in {region}: {code} - {message}", operation, region, code)
    # Connection failures and read timeouts
    if isinstance(error, (BotoConnectionError, HTTPClientError)):
        return TransientRemoteError(f"EC2 API {operation} failed in {region}: {error}", operation, region)
    return TerminalRemoteError(f"EC2 API {operation} failed in {region}: {error}", operation, region)


class ResourceAPI(ABC):
    """Abstract remote resource API.

    Implementations must tolerate concurrent calls from several threads.
    """

    @abstractmethod
    def list_instances(self, region: str, name_tag: str) -> List[Dict[str, Any]]:
        """List instances whose Name tag equals ``name_tag``."""

    @abstractmethod
    def list_images(self, region: str, tag_filters: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        """List private images owned by the account, optionally filtered by tags."""

    @abstractmethod
    def describe_image_states(self, region: str, image_ids: Sequence[str]) -> Dict[str, str]:
        """Return the EC2 state string of each requested image."""

    @abstractmethod
    def create_image(
        self,
        region: str,
        instance_id: str,
        name: str,
        description: str,
        no_reboot: bool = True,
        excluded_devices: Sequence[str] = (),
    ) -> str:
        """Create an image from an instance and return the new image id."""

    @abstractmethod
    def copy_image(
        self,
        source_region: str,
        dest_region: str,
        image_id: str,
        name: str,
        description: str,
        encrypted: bool = False,
        kms_key_id: Optional[str] = None,
    ) -> str:
        """Copy an image into ``dest_region`` and return the new image id."""

    @abstractmethod
    def tag_resources(self, region: str, resource_ids: Sequence[str], tags: Dict[str, str]) -> None:
        """Add tags to resources."""

    @abstractmethod
    def deregister_image(self, region: str, image_id: str) -> None:
        """Deregister an image."""

    @abstractmethod
    def list_snapshots(self, region: str) -> List[Dict[str, Any]]:
        """List EBS snapshots owned by the account."""

    @abstractmethod
    def delete_snapshot(self, region: str, snapshot_id: str) -> None:
        """Delete an EBS snapshot."""


class Ec2ResourceAPI(ResourceAPI):
    """ResourceAPI backed by the boto3 EC2 client.

    One client is created per region on first use and shared by every
    thread, so the adaptive retry limiter sees all calls to that region.
    """

    def __init__(self, aws_profile: Optional[str] = None) -> None:
        """Initialize the EC2 resource API.

        Args:
            aws_profile: AWS profile name (optional)
        """
        self.aws_profile = aws_profile
        self._clients: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def _client(self, region: str) -> Any:
        with self._lock:
            client = self._clients.get(region)
            if client is None:
                client = create_boto_client(service_name="ec2", region_name=region, profile_name=self.aws_profile)
                self._clients[region] = client
            return client

    def _call(
        self,
        region: str,
        operation: str,
        func: Callable[[Any], Any],
        transient_codes: frozenset = TRANSIENT_ERROR_CODES,
    ) -> Any:
        logger.debug(f"EC2 API {operation} in {region}")
        try:
            return func(self._client(region))
        except (ClientError, BotoCoreError) as e:
            raise classify_error(e, operation, region, transient_codes) from e

    def list_instances(self, region: str, name_tag: str) -> List[Dict[str, Any]]:
        def run(client: Any) -> List[Dict[str, Any]]:
            instances = []
            paginator = client.get_paginator("describe_instances")
            for page in paginator.paginate(Filters=[{"Name": "tag:Name", "Values": [name_tag]}]):
                for reservation in page.get("Reservations", []):
                    instances.extend(reservation.get("Instances", []))
            return instances

        return self._call(region, "DescribeInstances", run)

    def list_images(self, region: str, tag_filters: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        filters = [{"Name": "is-public", "Values": ["false"]}]
        for key, value in (tag_filters or {}).items():
            filters.append({"Name": f"tag:{key}", "Values": [value]})

        def run(client: Any) -> List[Dict[str, Any]]:
            return client.describe_images(Owners=["self"], Filters=filters).get("Images", [])

        return self._call(region, "DescribeImages", run)

    def describe_image_states(self, region: str, image_ids: Sequence[str]) -> Dict[str, str]:
        def run(client: Any) -> Dict[str, str]:
            images = client.describe_images(ImageIds=list(image_ids)).get("Images", [])
            return {image["ImageId"]: image.get("State", "pending") for image in images}

        return self._call(
            region,
            "DescribeImages",
            run,
            transient_codes=TRANSIENT_ERROR_CODES | EVENTUALLY_CONSISTENT_CODES,
        )

    def create_image(
        self,
        region: str,
        instance_id: str,
        name: str,
        description: str,
        no_reboot: bool = True,
        excluded_devices: Sequence[str] = (),
    ) -> str:
        params: Dict[str, Any] = {
            "InstanceId": instance_id,
            "Name": name,
            "Description": description,
            "NoReboot": no_reboot,
        }
        if excluded_devices:
            params["BlockDeviceMappings"] = [{"DeviceName": device, "NoDevice": ""} for device in excluded_devices]

        response = self._call(region, "CreateImage", lambda client: client.create_image(**params))
        return response["ImageId"]

    def copy_image(
        self,
        source_region: str,
        dest_region: str,
        image_id: str,
        name: str,
        description: str,
        encrypted: bool = False,
        kms_key_id: Optional[str] = None,
    ) -> str:
        params: Dict[str, Any] = {
            "SourceRegion": source_region,
            "SourceImageId": image_id,
            "Name": name,
            "Description": description,
        }
        if encrypted:
            params["Encrypted"] = True
            if kms_key_id:
                params["KmsKeyId"] = kms_key_id

        response = self._call(dest_region, "CopyImage", lambda client: client.copy_image(**params))
        return response["ImageId"]

    def tag_resources(self, region: str, resource_ids: Sequence[str], tags: Dict[str, str]) -> None:
        tag_list = [{"Key": key, "Value": value} for key, value in tags.items()]
        self._call(
            region,
            "CreateTags",
            lambda client: client.create_tags(Resources=list(resource_ids), Tags=tag_list),
        )

    def deregister_image(self, region: str, image_id: str) -> None:
        self._call(region, "DeregisterImage", lambda client: client.deregister_image(ImageId=image_id))

    def list_snapshots(self, region: str) -> List[Dict[str, Any]]:
        def run(client: Any) -> List[Dict[str, Any]]:
            snapshots = []
            paginator = client.get_paginator("describe_snapshots")
            for page in paginator.paginate(OwnerIds=["self"]):
                snapshots.extend(page.get("Snapshots", []))
            return snapshots

        return self._call(region, "DescribeSnapshots", run)

    def delete_snapshot(self, region: str, snapshot_id: str) -> None:
        self._call(region, "DeleteSnapshot", lambda client: client.delete_snapshot(SnapshotId=snapshot_id))
