"""AWS credential validation."""

from __future__ import annotations

from typing import Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, ProfileNotFound

from ..errors import CredentialValidationError
from .client import create_boto_client


def validate_credentials(profile_name: Optional[str] = None, region_name: Optional[str] = None) -> Dict[str, str]:
    """Validate AWS credentials with STS GetCallerIdentity.

    Args:
        profile_name: AWS profile name (optional)
        region_name: Region for the STS endpoint (optional)

    Returns:
        Dictionary with account_id, arn and user_id

    Raises:
        CredentialValidationError: If credentials are missing or rejected
    """
    try:
        sts = create_boto_client("sts", region_name=region_name, profile_name=profile_name)
        identity = sts.get_caller_identity()
    except ProfileNotFound as e:
        raise CredentialValidationError(f"AWS profile not found: {profile_name}") from e
    except NoCredentialsError as e:
        raise CredentialValidationError(
            "No AWS credentials found. Set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY or use --profile."
        ) from e
    except ClientError as e:
        message = e.response.get("Error", {}).get("Message", str(e))
        raise CredentialValidationError(f"AWS credentials rejected: {message}") from e
    except BotoCoreError as e:
        raise CredentialValidationError(f"Unable to validate AWS credentials: {e}") from e

    return {
        "account_id": identity["Account"],
        "arn": identity["Arn"],
        "user_id": identity["UserId"],
    }
