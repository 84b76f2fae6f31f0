from __future__ import annotations


class DomainError(Exception):
    pass


class DomainValidationError(DomainError):
    pass


class DomainInvariantError(DomainError):
    pass


class DomainNotFoundError(DomainError):
    pass


class DomainConflictError(DomainError):
    pass


class DomainDependencyError(DomainError):
    pass


class VendorCallError(DomainDependencyError):
    """Outbound vendor call failed before a usable response arrived."""

    def __init__(self, message: str, *, code: str = "vendor_unavailable") -> None:
        super().__init__(message)
        self.code = code


class ResponseParseError(DomainError):
    """Vendor replied, but the reply could not be shaped into a task result."""


class FeedbackTaskMissingError(DomainInvariantError):
    pass
