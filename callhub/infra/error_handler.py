"""Error taxonomy for the tool lifecycle and execution subsystem."""

from typing import Optional
from enum import Enum

import httpx


class ErrorCategory(str, Enum):
    """Categories of errors for better handling."""
    VALIDATION = "validation"  # Bad input shape, user-correctable
    NOT_FOUND = "not_found"  # Tool or agent absent
    CONFLICT = "conflict"  # Already attached, naming exhausted
    EXTERNAL_PLATFORM = "external_platform"  # Voice-agent platform failure
    ACTION_PROVIDER = "action_provider"  # Automation-action provider failure
    MESSAGING_PROVIDER = "messaging_provider"  # SMS provider failure
    PERSISTENCE = "persistence"  # Local store write failure
    UNAUTHORIZED = "unauthorized"  # Organization does not own the resource


class ToolServiceError(Exception):
    """Base exception for the subsystem."""
    def __init__(self, message: str, category: ErrorCategory, retryable: bool = False):
        self.message = message
        self.category = category
        self.retryable = retryable
        super().__init__(message)


class ValidationFailed(ToolServiceError):
    """Input failed validation. Carries the individual error messages."""
    def __init__(self, message: str, errors: Optional[list] = None):
        self.errors = errors or [message]
        super().__init__(message, ErrorCategory.VALIDATION, retryable=False)


class InvalidAttachmentMode(ValidationFailed):
    """Tool cannot be attached through the requested mechanism."""


class NotFound(ToolServiceError):
    """Requested tool or agent does not exist."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.NOT_FOUND, retryable=False)


class Conflict(ToolServiceError):
    """Operation conflicts with existing state."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.CONFLICT, retryable=False)


class NameConflict(Conflict):
    """No unique tool name could be found within the attempt limit."""


class AlreadyAttached(Conflict):
    """Tool is already attached to the agent."""


class ExternalPlatformFailed(ToolServiceError):
    """The voice-agent platform returned a non-success response or was unreachable."""
    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = True):
        self.status_code = status_code
        super().__init__(message, ErrorCategory.EXTERNAL_PLATFORM, retryable=retryable)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class ExternalCreateFailed(ExternalPlatformFailed):
    """Creating the tool on the platform failed."""


class ExternalUpdateFailed(ExternalPlatformFailed):
    """Updating a tool or assistant on the platform failed."""


class ExternalDeleteFailed(ExternalPlatformFailed):
    """Deleting a tool on the platform failed with something other than 404."""


class ActionProviderFailed(ToolServiceError):
    """The automation-action provider rejected or failed the invocation."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, ErrorCategory.ACTION_PROVIDER, retryable=True)


class MessagingProviderFailed(ToolServiceError):
    """A single SMS send failed."""
    def __init__(self, message: str, recipient: Optional[str] = None):
        self.recipient = recipient
        super().__init__(message, ErrorCategory.MESSAGING_PROVIDER, retryable=True)


class PersistenceFailed(ToolServiceError):
    """The local store could not be read or written."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.PERSISTENCE, retryable=True)


class LocalPersistFailed(PersistenceFailed):
    """A local write failed after external side effects were applied."""


class Unauthorized(ToolServiceError):
    """Caller's organization does not own the resource."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.UNAUTHORIZED, retryable=False)


def wrap_platform_error(
    error: Exception,
    operation: str,
    error_class: type = ExternalPlatformFailed,
) -> ExternalPlatformFailed:
    """
    Wrap an httpx error raised while talking to the voice-agent platform.

    Args:
        error: Original exception
        operation: Operation name for the message (e.g. 'delete_tool')
        error_class: ExternalPlatformFailed subclass to build

    Returns:
        ExternalPlatformFailed (or subclass) carrying the HTTP status when known
    """
    if isinstance(error, ExternalPlatformFailed):
        if isinstance(error, error_class):
            return error
        return error_class(error.message, status_code=error.status_code, retryable=error.retryable)

    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        body = error.response.text[:200] if error.response.text else ""
        # 4xx other than 404/408/429 will fail the same way on retry
        retryable = status_code >= 500 or status_code in (404, 408, 429)
        return error_class(
            f"Platform {operation} failed with status {status_code}: {body}",
            status_code=status_code,
            retryable=retryable,
        )

    if isinstance(error, httpx.TimeoutException):
        return error_class(f"Platform {operation} timed out", retryable=True)

    if isinstance(error, httpx.RequestError):
        return error_class(f"Platform {operation} request error: {error}", retryable=True)

    return error_class(f"Platform {operation} failed: {error}", retryable=False)
