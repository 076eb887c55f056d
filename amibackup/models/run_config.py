"""Immutable run configuration.

Built once per invocation from CLI options and the user config file, then
passed read-only to every component.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence, Tuple

import boto3

from ..errors import ConfigurationError
from .retention_window import RetentionWindow, parse_windows

DEFAULT_SOURCE_REGION = "us-east-1"
DEFAULT_DEST_REGION = "us-west-1"
DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_POLL_INTERVAL_SECONDS = 5.0


def known_ec2_regions() -> frozenset:
    """Regions boto3 knows an EC2 endpoint for, across all partitions."""
    session = boto3.session.Session()
    regions = set()
    for partition in session.get_available_partitions():
        regions.update(session.get_available_regions("ec2", partition_name=partition))
    return frozenset(regions)


def kms_key_region(key_id: str) -> Optional[str]:
    """Return the region encoded in a KMS key or alias ARN.

    Bare key ids and ``alias/...`` names carry no region; they are resolved
    in whichever region the API call is made in.
    """
    if not key_id.startswith("arn:"):
        return None
    parts = key_id.split(":")
    if len(parts) < 6 or parts[2] != "kms":
        raise ConfigurationError(f"Invalid KMS key ARN: {key_id}")
    return parts[3]


@dataclass(frozen=True)
class RunConfig:
    """Validated configuration for one amibackup invocation.

    Attributes:
        names: Name tag values selecting the instances to back up
        source_region: Region of the running instances
        dest_region: Region the backup AMIs are copied to
        timeout: Global deadline for the create-and-replicate phase (seconds)
        poll_interval: Delay between image state polls (seconds)
        windows: Retention windows, evaluated independently
        dry_run: Log purge actions without performing them
        prune_only: Skip the create path entirely
        ignored_devices: Device names excluded from the image
        encrypt: Encrypt the destination copy
        kms_key_id: KMS key for the destination copy (default EBS key if None)
        invoked_at: Invocation instant; window boundaries are relative to it
        aws_profile: AWS profile name (optional)
        audit_dir: Directory for purge audit logs (optional)
    """

    names: Tuple[str, ...]
    source_region: str = DEFAULT_SOURCE_REGION
    dest_region: str = DEFAULT_DEST_REGION
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    windows: Tuple[RetentionWindow, ...] = ()
    dry_run: bool = False
    prune_only: bool = False
    ignored_devices: Tuple[str, ...] = ()
    encrypt: bool = False
    kms_key_id: Optional[str] = None
    invoked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    aws_profile: Optional[str] = None
    audit_dir: Optional[str] = None

    @property
    def regions(self) -> Tuple[str, ...]:
        """Regions holding backup AMIs (source first)."""
        if self.dest_region == self.source_region:
            return (self.source_region,)
        return (self.source_region, self.dest_region)

    @property
    def needs_copy(self) -> bool:
        return self.dest_region != self.source_region


def build_run_config(
    names: Sequence[str],
    source_region: str = DEFAULT_SOURCE_REGION,
    dest_region: str = DEFAULT_DEST_REGION,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    window_specs: Sequence[str] = (),
    dry_run: bool = False,
    prune_only: bool = False,
    ignored_devices: Sequence[str] = (),
    encrypt: bool = False,
    kms_key_id: Optional[str] = None,
    aws_profile: Optional[str] = None,
    audit_dir: Optional[str] = None,
    now: Optional[datetime] = None,
    known_regions: Optional[Iterable[str]] = None,
) -> RunConfig:
    """Validate options and build the immutable RunConfig.

    Args:
        names: Name tag values (at least one)
        source_region: Region of the running instances
        dest_region: Region to copy backups to
        timeout: Global deadline in seconds
        poll_interval: Poll interval in seconds
        window_specs: ``INTERVAL:START:END`` retention window specs
        dry_run: Purge dry-run mode
        prune_only: Skip the create path
        ignored_devices: Device names to exclude from the image
        encrypt: Encrypt the destination copy
        kms_key_id: KMS key id or ARN for the destination copy
        aws_profile: AWS profile name
        audit_dir: Purge audit log directory
        now: Invocation instant (defaults to the current UTC time)
        known_regions: Valid region names (defaults to boto3's EC2 regions)

    Returns:
        Validated RunConfig

    Raises:
        ConfigurationError: If any option is invalid
    """
    cleaned_names = tuple(n.strip() for n in names if n and n.strip())
    if not cleaned_names:
        raise ConfigurationError("At least one instance name tag is required")

    regions = frozenset(known_regions) if known_regions is not None else known_ec2_regions()
    for label, region in (("source", source_region), ("destination", dest_region)):
        if region not in regions:
            raise ConfigurationError(f"Bad {label} region: {region}")

    if timeout <= 0:
        raise ConfigurationError(f"Invalid timeout: {timeout}")
    if poll_interval <= 0:
        raise ConfigurationError(f"Invalid poll interval: {poll_interval}")

    if kms_key_id and not encrypt:
        raise ConfigurationError("--kms-key-id requires --encrypt")
    if kms_key_id:
        key_region = kms_key_region(kms_key_id)
        if key_region is not None and key_region != dest_region:
            raise ConfigurationError(
                f"KMS key {kms_key_id} is in {key_region}, but copies are encrypted in {dest_region}"
            )

    devices = tuple(d.strip() for d in ignored_devices)
    if any(not d for d in devices):
        raise ConfigurationError("Ignored volume names cannot be empty")

    invoked_at = now or datetime.now(timezone.utc)
    windows = tuple(parse_windows(list(window_specs), invoked_at))

    return RunConfig(
        names=cleaned_names,
        source_region=source_region,
        dest_region=dest_region,
        timeout=float(timeout),
        poll_interval=float(poll_interval),
        windows=windows,
        dry_run=dry_run,
        prune_only=prune_only,
        ignored_devices=devices,
        encrypt=encrypt,
        kms_key_id=kms_key_id,
        invoked_at=invoked_at,
        aws_profile=aws_profile,
        audit_dir=audit_dir,
    )
