"""
Type definitions for acmepki.

Contains the result types, failure kinds and exception hierarchy shared
across the certificate lifecycle modules.
"""

from dataclasses import dataclass
from typing import Any


# Structured result types for lifecycle steps
@dataclass
class Success:
    message: str = ""
    data: Any | None = None


@dataclass(frozen=True)
class SelfTestStatusError:
    """The challenge URL answered with a non-success HTTP status."""

    url: str
    status_code: int


@dataclass(frozen=True)
class SelfTestMismatch:
    """The challenge URL served something other than the expected content."""

    url: str
    expected: str
    actual: str


@dataclass(frozen=True)
class ValidationFailed:
    """The authorization settled (or timed out) on a status other than valid."""

    domain: str
    status: str


ValidationFailure = SelfTestStatusError | SelfTestMismatch | ValidationFailed


@dataclass
class Error:
    error: str
    exception: Exception | None = None
    recovery_suggestions: str | None = None
    reason: ValidationFailure | None = None  # Set for expected validation failures


# Union type for step results
Result = Success | Error


class PKIError(Exception):
    """Base exception for acmepki errors."""

    pass


class ConfigurationError(PKIError):
    """Exception raised when required configuration is missing."""

    def __init__(self, message: str, guidance: str | None = None) -> None:
        super().__init__(message)
        self.guidance = guidance


class KeyLoadError(PKIError):
    """Exception raised when a private key file cannot be read or parsed."""

    pass


class CSRError(PKIError):
    """Exception raised when a CSR cannot be built or parsed."""

    pass


class CertificateLoadError(PKIError):
    """Exception raised when a certificate file cannot be read or parsed."""

    pass


class AuthorizationError(PKIError):
    """Exception raised when a domain authorization does not become valid."""

    def __init__(self, message: str, reason: ValidationFailure | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class ACMEProtocolError(PKIError):
    """Exception raised when the certificate authority rejects a request."""

    pass


class ChainFetchError(PKIError):
    """Exception raised when an issuer certificate cannot be fetched."""

    pass
