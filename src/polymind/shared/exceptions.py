"""Custom exception hierarchy for Polymind."""

from typing import Any


class PolymindError(Exception):
    """Base exception for all Polymind errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ----- Caller-fixable Errors -----


class ConfigurationError(PolymindError):
    """Unknown provider, blank credential or blank model id.

    Never retried automatically; the caller has to fix its input.
    """

    pass


class NotFoundError(PolymindError):
    """Requested resource was not found."""

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(
            message=f"{resource} not found",
            details={"resource": resource, "identifier": identifier},
        )


# ----- External Service Errors -----


class ExternalServiceError(PolymindError):
    """Error from an external service."""

    pass


class VendorError(ExternalServiceError):
    """Vendor answered with a non-2xx status or an unusable body."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        merged = {"provider": provider, "status_code": status_code}
        merged.update(details or {})
        super().__init__(message, merged)


class TransportError(ExternalServiceError):
    """Vendor could not be reached (connection refused, timeout, DNS)."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.provider = provider
        merged = {"provider": provider}
        merged.update(details or {})
        super().__init__(message, merged)
