"""
Error taxonomy for registry operations.

Every failure surfaced by the core derives from RegistryError and carries a
stable machine-readable code, the HTTP status the API layer maps it to, and
whether the caller may retry.
"""

from __future__ import annotations

from typing import Any


class RegistryError(Exception):
    """Base exception for registry operations."""

    code: str = "internal_error"
    http_status: int = 500
    retryable: bool = False

    def __init__(self, message: str, *, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> dict[str, Any]:
        """Convert to API error body."""
        body: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = list(self.details)
        return body


class InvalidSchemaError(RegistryError):
    """Raised when a document violates the manifest or bundle schema."""

    code = "invalid_schema"
    http_status = 400


class PayloadTooLargeError(InvalidSchemaError):
    """Raised when a submitted document exceeds the configured size limit."""

    code = "payload_too_large"
    http_status = 413


class InvalidQueryError(RegistryError):
    """Raised for an empty or oversized search query."""

    code = "invalid_query"
    http_status = 400


class InvalidSignatureError(RegistryError):
    """Raised on signature decode failure, bad algorithm or crypto mismatch."""

    code = "invalid_signature"
    http_status = 400


class NotOwnerError(RegistryError):
    """Raised when the publishing key may not write to an existing package."""

    code = "not_owner"
    http_status = 403


class AlreadyExistsError(RegistryError):
    """Raised when (package, version) has already been claimed."""

    code = "already_exists"
    http_status = 409

    def __init__(self, package_id: str, version: str) -> None:
        super().__init__(f"{package_id}@{version} already exists")
        self.package_id = package_id
        self.version = version


class NotFoundError(RegistryError):
    """Raised for an unknown package, version or entity."""

    code = "not_found"
    http_status = 404


class DependencyCycleError(RegistryError):
    """Raised when the id-level dependency graph of a root contains a cycle."""

    code = "dependency_cycle"
    http_status = 409

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"dependency cycle: {' -> '.join(cycle)}", details=list(cycle))
        self.cycle = cycle


class ResolutionLimitExceededError(InvalidSchemaError):
    """Raised when a dependency walk exceeds the configured depth bound."""

    code = "resolution_limit_exceeded"
    http_status = 422


class UnsatisfiedInterfacesError(RegistryError):
    """Raised under the blocking policy when required interfaces are missing."""

    code = "unsatisfied_interfaces"
    http_status = 422

    def __init__(self, missing: list[str]) -> None:
        super().__init__(
            f"unsatisfied interfaces: {', '.join(missing)}", details=list(missing)
        )
        self.missing = missing


class UnavailableError(RegistryError):
    """Raised when the backing store times out or cannot be reached.

    Retryable: the operation that raised it has left no visible write behind.
    """

    code = "unavailable"
    http_status = 503
    retryable = True


class InternalError(RegistryError):
    """Raised for unexpected failures. Message is safe to surface."""

    code = "internal_error"
    http_status = 500
