"""Courier exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from CourierError for easy catching.

Delivery errors (TransientDeliveryError, PermanentDeliveryError) are never
raised into event producers. DeliveryPolicy builds them to describe an
outcome, and the worker records their ``code`` and message on the attempt row.
"""

from __future__ import annotations


class CourierError(Exception):
    """Base exception for all Courier errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "courier_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(CourierError):
    """Invalid input provided.

    Raised synchronously when subscription input fails validation.
    Never retried.

    Attributes:
        field: The field that failed validation.
        message: Description of the validation failure.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(CourierError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "subscription", "event").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class StorageError(CourierError):
    """Storage operation failed.

    Raised when a database operation fails. ``transient`` marks failures
    that may succeed when retried (lock contention, dropped connections).
    """

    code: str = "storage_error"

    def __init__(self, message: str, transient: bool = False) -> None:
        self.transient = transient
        super().__init__(message)


class ConfigurationError(CourierError):
    """Configuration error.

    Raised when required configuration is missing or invalid, such as a
    database URL that cannot be parsed or names a driver without asyncio
    support.
    """

    code: str = "configuration_error"


class DeliveryError(CourierError):
    """A webhook delivery attempt did not succeed.

    Attributes:
        status_code: HTTP status returned by the receiver, if any.
    """

    code: str = "delivery_error"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class TransientDeliveryError(DeliveryError):
    """Network failure, timeout, or non-2xx response. Eligible for retry."""

    code: str = "transient_delivery_error"


class PermanentDeliveryError(DeliveryError):
    """Delivery given up: retries exhausted or the subscription went away."""

    code: str = "permanent_delivery_error"
