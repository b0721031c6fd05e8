"""
Core exception classes for AMI Migrate.
"""
from typing import Optional


class AMIMigrateError(Exception):
    """Base exception for all AMI Migrate errors."""

    def __init__(self, message: str, details: str = None, step: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        self.step = step

    def __str__(self) -> str:
        if self.step:
            return f"[{self.step}] {self.message}"
        return self.message


class ConfigurationError(AMIMigrateError):
    """Raised when configuration is invalid or missing."""
    pass


class ValidationError(AMIMigrateError):
    """Raised when caller-supplied arguments are missing or invalid."""
    pass


class ResourceNotFound(AMIMigrateError):
    """Raised when a resource the operation depends on does not exist."""

    resource_kind = "resource"

    def __init__(self, resource_id: str, message: str = None, step: Optional[str] = None):
        super().__init__(message or f"{self.resource_kind} not found: {resource_id}", step=step)
        self.resource_id = resource_id


class InstanceNotFound(ResourceNotFound):
    """Raised when an instance id is unknown to the provider."""

    resource_kind = "instance"


class ImageNotFound(ResourceNotFound):
    """Raised when an image (AMI) id is unknown to the provider."""

    resource_kind = "AMI"


class SnapshotNotFound(ResourceNotFound):
    """Raised when a snapshot id is unknown to the provider."""

    resource_kind = "snapshot"


class VolumeNotFound(ResourceNotFound):
    """Raised when a volume id is unknown to the provider."""

    resource_kind = "volume"


class ProviderError(AMIMigrateError):
    """Raised by provider implementations when a single API call fails.

    The ``kind`` attribute classifies the failure. Only ``not_found`` carries
    business meaning for the orchestrator; everything else propagates.
    """

    NOT_FOUND = "not_found"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    INVALID_REQUEST = "invalid_request"
    UNAUTHORIZED = "unauthorized"

    def __init__(self, message: str, kind: str = PROVIDER_UNAVAILABLE, details: str = None):
        super().__init__(message, details=details)
        self.kind = kind

    @property
    def is_not_found(self) -> bool:
        return self.kind == self.NOT_FOUND


class ProviderCallFailed(AMIMigrateError):
    """Raised when a lifecycle step fails because a provider call failed.

    The original ProviderError is chained as ``__cause__`` and kept on
    ``cause``.
    """

    def __init__(self, message: str, step: str, cause: Exception = None):
        super().__init__(message, details=str(cause) if cause else None, step=step)
        self.cause = cause


class LaunchFailed(ProviderCallFailed):
    """Raised when launching a replacement instance fails."""
    pass


class StopFailed(ProviderCallFailed):
    """Raised when the stop call itself errors (not a wait timeout)."""
    pass


class WaitError(AMIMigrateError):
    """Base class for waiter failures."""

    def __init__(
        self,
        message: str,
        resource_kind: str,
        resource_id: str,
        target_state: str,
        last_state: Optional[str] = None,
    ):
        super().__init__(message)
        self.resource_kind = resource_kind
        self.resource_id = resource_id
        self.target_state = target_state
        self.last_state = last_state


class WaitTimeout(WaitError):
    """Raised when a resource does not reach its target state in time."""
    pass


class WaitTerminalState(WaitError):
    """Raised when a resource reaches a state the target cannot follow from."""
    pass


class OperationCancelled(AMIMigrateError):
    """Raised when the caller's cancel event is set."""

    def __init__(self, message: str = "Operation cancelled", step: Optional[str] = None):
        super().__init__(message, step=step)
