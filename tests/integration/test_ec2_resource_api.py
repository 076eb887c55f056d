"""Integration tests for Ec2ResourceAPI against a moto-mocked EC2."""

from __future__ import annotations

import boto3
import pytest
from moto import mock_aws

from amibackup.aws.resource_api import Ec2ResourceAPI
from amibackup.catalog.reader import CatalogReader
from amibackup.errors import TerminalRemoteError

SOURCE = "us-east-1"
DEST = "us-west-1"


@pytest.fixture
def aws_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    """Mock AWS Credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", SOURCE)
    monkeypatch.delenv("AWS_PROFILE", raising=False)


@pytest.fixture
def ec2(aws_credentials):
    """Mocked EC2 with one running instance named ``web``."""
    with mock_aws():
        client = boto3.client("ec2", region_name=SOURCE)
        base_image = client.describe_images(Owners=["amazon"])["Images"][0]["ImageId"]
        reservation = client.run_instances(
            ImageId=base_image,
            MinCount=1,
            MaxCount=1,
            TagSpecifications=[{"ResourceType": "instance", "Tags": [{"Key": "Name", "Value": "web"}]}],
        )
        yield client, reservation["Instances"][0]["InstanceId"]


class TestEc2ResourceAPI:
    """End-to-end calls through boto3 against moto."""

    def test_list_instances(self, ec2) -> None:
        """Test instances are found by Name tag."""
        _, instance_id = ec2

        instances = CatalogReader(Ec2ResourceAPI()).list_instances(SOURCE, "web")

        assert [i.instance_id for i in instances] == [instance_id]
        assert CatalogReader(Ec2ResourceAPI()).list_instances(SOURCE, "db") == []

    def test_create_tag_and_list(self, ec2) -> None:
        """Test a created and tagged image is listed as a managed backup."""
        _, instance_id = ec2
        api = Ec2ResourceAPI()

        image_id = api.create_image(SOURCE, instance_id, "web-2024-06-01_12-00-00-" + instance_id, "web backup")
        api.tag_resources(
            SOURCE,
            [image_id],
            {"hostname": "web", "instance": instance_id, "timestamp": "1717243200"},
        )

        images = CatalogReader(api).list_managed_images(SOURCE, "web")

        assert [i.image_id for i in images] == [image_id]
        assert images[0].instance_id == instance_id
        assert images[0].backup_timestamp.year == 2024
        assert image_id in api.describe_image_states(SOURCE, [image_id])

    def test_copy_image(self, ec2) -> None:
        """Test an image is copied into the destination region."""
        _, instance_id = ec2
        api = Ec2ResourceAPI()
        image_id = api.create_image(SOURCE, instance_id, "web-backup", "web backup")

        copy_id = api.copy_image(SOURCE, DEST, image_id, "web-backup", "web backup")

        assert copy_id != image_id
        assert copy_id in api.describe_image_states(DEST, [copy_id])

    def test_deregister_image(self, ec2) -> None:
        """Test deregistered images are no longer listed."""
        _, instance_id = ec2
        api = Ec2ResourceAPI()
        image_id = api.create_image(SOURCE, instance_id, "web-backup", "web backup")
        api.tag_resources(SOURCE, [image_id], {"hostname": "web"})

        api.deregister_image(SOURCE, image_id)

        assert api.list_images(SOURCE, tag_filters={"hostname": "web"}) == []

    def test_delete_snapshot(self, ec2) -> None:
        """Test snapshot listing and deletion."""
        client, _ = ec2
        volume = client.create_volume(AvailabilityZone=f"{SOURCE}a", Size=8)
        snapshot_id = client.create_snapshot(VolumeId=volume["VolumeId"], Description="nightly")["SnapshotId"]
        api = Ec2ResourceAPI()

        assert snapshot_id in [s["SnapshotId"] for s in api.list_snapshots(SOURCE)]

        api.delete_snapshot(SOURCE, snapshot_id)

        assert snapshot_id not in [s["SnapshotId"] for s in api.list_snapshots(SOURCE)]

    def test_missing_snapshot_is_terminal(self, ec2) -> None:
        """Test API errors surface with their error code."""
        with pytest.raises(TerminalRemoteError) as exc_info:
            Ec2ResourceAPI().delete_snapshot(SOURCE, "snap-00000000000000000")

        assert exc_info.value.code == "InvalidSnapshot.NotFound"
