from __future__ import annotations


class PolicyError(Exception):
    """Base error for visibility/assignment policy failures."""


class PermissionDeniedError(PolicyError):
    """Raised when the caller's role does not allow the requested mutation."""

    def __init__(self, action: str, resource: str, message: str = "Permission denied") -> None:
        self.action = action
        self.resource = resource
        super().__init__(message)


class RecordNotFoundError(PolicyError):
    """Raised when the target record or target user does not exist."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)
