"""Error taxonomy for billing flows."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class BillingError(Exception):
    """Base class for billing failures surfaced to API callers."""

    message: str
    code: str = "billing_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


@dataclass
class AuthenticationError(BillingError):
    """Missing or invalid webhook signature. Never retried."""

    code: str = "invalid_signature"
    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass
class ValidationError(BillingError):
    """Missing required field or unsupported value in a request or event."""

    code: str = "invalid_request"
    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass
class UpstreamError(BillingError):
    """The payment processor API failed."""

    code: str = "upstream_error"
    status_code: int = status.HTTP_502_BAD_GATEWAY


@dataclass
class PersistenceError(BillingError):
    """A subscription write or read failed."""

    code: str = "persistence_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR


@dataclass
class ConfigurationError(BillingError):
    """Billing is misconfigured, e.g. no price for a tier."""

    code: str = "configuration_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR


__all__ = [
    "AuthenticationError",
    "BillingError",
    "ConfigurationError",
    "PersistenceError",
    "UpstreamError",
    "ValidationError",
]
