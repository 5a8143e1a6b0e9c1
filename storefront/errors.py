"""Custom exceptions for the storefront service.

Each error carries the HTTP status the API surface answers with.
"""
from typing import Optional


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.message}


class ValidationError(StorefrontError):
    """Raised when input is missing or malformed. User-correctable."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class Unauthorized(StorefrontError):
    """Raised when the caller has no usable session."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class Forbidden(Unauthorized):
    """Raised when the caller is known but lacks the role for an action."""

    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class NotFound(StorefrontError):
    """Raised when an entity is absent or not owned by the caller."""

    status_code = 404

    def __init__(self, entity: str, ref: Optional[str] = None):
        self.entity = entity
        self.ref = ref
        super().__init__(f"{entity} not found")


class PaymentProviderError(StorefrontError):
    """Raised when the payment provider rejects a request or is unreachable."""

    status_code = 502

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message)


class SignatureInvalid(StorefrontError):
    """Raised when a payment callback signature does not verify."""

    status_code = 400

    def __init__(self, message: str = "Invalid payment signature"):
        super().__init__(message)
