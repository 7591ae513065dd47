"""
Error taxonomy for the bridge.

Every failure that crosses a component boundary is one of these. The router
turns them into short replies; only unclassified exceptions are logged as
system errors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .provisioning.reporting import ReconciliationReport


class BridgeError(Exception):
    """Base class for all classified bridge errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.user_message = message


class PermissionDenied(BridgeError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ConfigNotFound(BridgeError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Configuration document not found: {path}")
        self.path = path


class ValidationFailed(BridgeError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ResourceNotFound(BridgeError):
    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"{kind} not found: {name}")
        self.kind = kind
        self.name = name


class PlatformError(BridgeError):
    """A chat-platform call failed in a way the caller may want to branch on."""


class PlatformRateLimited(PlatformError):
    def __init__(self, retry_after_ms: int | None = None) -> None:
        hint = f" (retry after {retry_after_ms}ms)" if retry_after_ms is not None else ""
        super().__init__(f"Rate limited by the platform{hint}")
        self.retry_after_ms = retry_after_ms


class PlatformForbidden(PlatformError):
    def __init__(self, message: str = "Missing permissions for this action") -> None:
        super().__init__(message)


class PlatformResourceLimitReached(PlatformError):
    def __init__(self, message: str = "Maximum number of channels or roles reached") -> None:
        super().__init__(message)


class UpstreamTimeout(BridgeError):
    def __init__(self, message: str = "The upstream service timed out") -> None:
        super().__init__(message)


class UpstreamFailure(BridgeError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ReconciliationAborted(BridgeError):
    """Raised when a role or category failure stops a reconciliation run.

    ``report`` holds everything that succeeded before the failure.
    """

    def __init__(self, report: "ReconciliationReport", cause: BridgeError) -> None:
        super().__init__(f"Setup aborted: {cause.user_message}")
        self.report = report
        self.cause = cause
