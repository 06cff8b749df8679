# SPDX-License-Identifier: MPL-2.0
"""Custom exceptions for Permit Trust.

This module defines the error taxonomy used across issuance and verification.
Structural and cryptographic failures are terminal and end up classified as
``invalid``; :class:`InfrastructureFailure` is the only error that triggers the
offline fallback instead of a classification.
"""

from typing import Any, Dict, Optional


class PermitTrustError(Exception):
    """Base exception for all Permit Trust errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            details: Optional dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class CredentialError(PermitTrustError):
    """Base exception for credential construction and parsing errors."""

    pass


class EncodingError(CredentialError):
    """Raised when a credential payload cannot be serialized."""

    pass


class MalformedPayloadError(CredentialError):
    """Raised when payload bytes are not a valid serialized credential."""

    pass


class URIParseError(CredentialError):
    """Raised when scanned text is not a well-formed verification URI."""

    pass


class CryptographicError(PermitTrustError):
    """Raised when cryptographic operations fail."""

    pass


class SigningError(CryptographicError):
    """Raised when the private key is unavailable or unusable."""

    pass


class InvalidKeyError(CryptographicError):
    """Raised when a public key is invalid or malformed."""

    pass


class SignatureVerificationFailure(CryptographicError):
    """Raised when a signature does not match the payload and public key."""

    pass


class StaleCredentialError(CredentialError):
    """Raised when a credential is older than the freshness window."""

    def __init__(
        self,
        message: str,
        age_ms: int,
        max_age_ms: int,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.age_ms = age_ms
        self.max_age_ms = max_age_ms


class UnknownRecordError(PermitTrustError):
    """Raised when a credential references a record the source does not hold."""

    def __init__(
        self,
        record_id: str,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message or f"Unknown record: {record_id}", details)
        self.record_id = record_id


class InfrastructureFailure(PermitTrustError):
    """Raised when a record source or log sink cannot be reached.

    This is not a verdict on the credential; callers fall back to offline
    verification before classifying anything.
    """

    pass


class DatabaseError(PermitTrustError):
    """Base exception for local storage errors."""

    pass


class EntryNotFoundError(DatabaseError):
    """Raised when a requested entry is not found in the database."""

    pass


class ConfigurationError(PermitTrustError):
    """Raised when configuration is invalid or missing."""

    pass
