"""boto3 client construction."""

from __future__ import annotations

import logging
from typing import Any, Optional

import boto3
from botocore.config import Config

logger = logging.getLogger(__name__)

# Throttling during large fan-outs is expected; let botocore back off first.
CLIENT_CONFIG = Config(
    retries={"max_attempts": 8, "mode": "adaptive"},
    user_agent_extra="amibackup",
)


def create_boto_client(
    service_name: str,
    region_name: Optional[str] = None,
    profile_name: Optional[str] = None,
) -> Any:
    """Create a boto3 client.

    A new session is created per call because boto3 sessions are not
    thread-safe. Callers keep the returned client; Ec2ResourceAPI holds one
    per region.

    Args:
        service_name: AWS service name (e.g. "ec2")
        region_name: AWS region
        profile_name: AWS profile name (optional)

    Returns:
        boto3 client
    """
    session = boto3.session.Session(profile_name=profile_name)
    logger.debug(f"Creating {service_name} client for {region_name} (profile: {profile_name or 'default'})")
    return session.client(service_name, region_name=region_name, config=CLIENT_CONFIG)
