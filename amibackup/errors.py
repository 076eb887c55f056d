"""Error taxonomy shared by every amibackup component.

Only the CLI boundary turns these into process exit codes. Components raise
them (or record them in a result) and never exit on their own.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .models.backup_task import PendingOperation


class AmiBackupError(Exception):
    """Base class for all amibackup errors."""


class ConfigurationError(AmiBackupError):
    """Invalid configuration detected before any remote call is made."""


class CredentialValidationError(ConfigurationError):
    """AWS credentials are missing or rejected."""


class RemoteError(AmiBackupError):
    """A call to the remote resource API failed.

    Attributes:
        operation: API operation name (e.g. "CreateImage")
        region: AWS region the call was made against
        code: AWS error code when one was returned
    """

    def __init__(
        self,
        message: str,
        operation: str = "",
        region: str = "",
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.region = region
        self.code = code


class TransientRemoteError(RemoteError):
    """Retryable failure (throttling, service unavailable, connection reset)."""


class TerminalRemoteError(RemoteError):
    """Non-retryable failure; fatal to the item it concerns only."""


class GlobalTimeout(AmiBackupError):
    """The backup deadline elapsed with operations still pending."""

    def __init__(self, timeout: float, pending: List["PendingOperation"]) -> None:
        ids = ", ".join(op.image_id or op.instance_id for op in pending)
        super().__init__(f"Timeout after {timeout:g}s waiting for AMIs: {ids}")
        self.timeout = timeout
        self.pending = pending


class RunAborted(AmiBackupError):
    """The run cannot do any useful work (e.g. no instance matched)."""
