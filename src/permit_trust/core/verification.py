# SPDX-License-Identifier: MPL-2.0
"""
Verification Module for Permit Trust

This module decides whether a presented credential is genuine and fresh, resolves
the record it references through a record source, and classifies the result as
``valid``, ``expired`` or ``invalid``.
"""

import logging
from typing import Callable, Optional, Union

from permit_trust.logging_config import audit_log

from .crypto import VerificationKey
from .exceptions import (
    DatabaseError,
    InfrastructureFailure,
    MalformedPayloadError,
    SignatureVerificationFailure,
    StaleCredentialError,
    UnknownRecordError,
    URIParseError,
)
from .models import (
    CredentialPayload,
    FailureReason,
    PermitRecord,
    ScanLogEntry,
    SignedCredential,
    VerificationMode,
    VerificationOutcome,
    VerificationResult,
    now_millis,
)
from .payload import credential_decoder, decode
from .sources import RecordSource, ScanLogSink
from .transport import OpticalTransport

logger = logging.getLogger(__name__)

# Default freshness window for a credential's issue timestamp
DEFAULT_MAX_AGE_MS = 24 * 60 * 60 * 1000

MESSAGES = {
    FailureReason.MALFORMED: "Malformed credential: payload or signature could not be decoded",
    FailureReason.SIGNATURE: "Invalid credential: signature verification failed",
    FailureReason.CONNECTIVITY: "Unable to verify: connectivity failure and no usable local data",
    FailureReason.UNRECOGNIZED_FORMAT: "Invalid code: unrecognized format",
}


class Verifier:
    """
    Verifies signed permit credentials.

    The verifier holds only the public key.  Which record source is used is
    decided per call, so the same instance serves the online path and the
    offline (cache) path.
    """

    def __init__(
        self,
        verification_key: VerificationKey,
        log_sink: ScanLogSink,
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        clock: Callable[[], int] = now_millis,
    ):
        """Initialize the verifier.

        Args:
            verification_key: Public key of the issuing authority
            log_sink: Destination for one scan log entry per classification
            max_age_ms: Maximum accepted credential age in milliseconds
            clock: Returns the current time as epoch milliseconds
        """
        self.verification_key = verification_key
        self.log_sink = log_sink
        self.max_age_ms = max_age_ms
        self.clock = clock

    def check_credential(self, credential: SignedCredential) -> CredentialPayload:
        """Run the record-independent checks: decoding, signature, freshness.

        Raises:
            MalformedPayloadError: If either part is not decodable
            SignatureVerificationFailure: If the signature does not verify
            StaleCredentialError: If the credential is older than the window
        """
        try:
            b64decode = credential_decoder(credential.signature)
            payload_bytes = b64decode(credential.payload_encoded)
            signature = b64decode(credential.signature)
        except ValueError as e:
            raise MalformedPayloadError(f"Credential is not valid base64: {e}") from e

        if not self.verification_key.verify(signature, payload_bytes):
            raise SignatureVerificationFailure(
                "signature verification failed", {"kid": self.verification_key.kid}
            )

        payload = decode(payload_bytes)

        age_ms = self.clock() - payload.issued_at
        if age_ms > self.max_age_ms:
            raise StaleCredentialError(
                "Credential issued outside the freshness window",
                age_ms=age_ms,
                max_age_ms=self.max_age_ms,
                details={"record_id": payload.record_id},
            )
        return payload

    def resolve(self, payload: CredentialPayload, source: RecordSource) -> PermitRecord:
        """Fetch the referenced record.

        Raises:
            UnknownRecordError: If the source does not know the record
            InfrastructureFailure: If the source cannot be reached
        """
        record = source.fetch_record(payload.record_id)
        if record is None:
            raise UnknownRecordError(payload.record_id)
        return record

    def classify(self, record: PermitRecord, mode: VerificationMode) -> VerificationResult:
        """Compare the record's expiration date with the current time."""
        if record.is_expired(self.clock()):
            outcome = VerificationOutcome.EXPIRED
            message = "Permit has expired"
        else:
            outcome = VerificationOutcome.VALID
            message = "Valid permit"
            if mode is VerificationMode.OFFLINE:
                message += " (offline verification)"
        return VerificationResult(
            result=outcome,
            message=message,
            mode=mode,
            record=record.summary(),
            credential_id=record.card.card_id if record.card is not None else None,
        )

    def verify(
        self,
        credential: SignedCredential,
        source: RecordSource,
        mode: VerificationMode,
        agent_id: Optional[str] = None,
    ) -> VerificationResult:
        """Verify a credential against ``source`` and log the outcome.

        Every terminal classification is logged exactly once.

        Raises:
            InfrastructureFailure: If ``source`` cannot be reached; nothing is
                logged so the caller can retry on another source.
        """
        try:
            payload = self.check_credential(credential)
            record = self.resolve(payload, source)
        except MalformedPayloadError as e:
            logger.info("Rejected malformed credential: %s", e.message)
            result = self.invalid(FailureReason.MALFORMED, mode)
        except SignatureVerificationFailure:
            audit_log.security_event(
                "signature_verification_failed",
                severity="medium",
                mode=mode.value,
                agent_id=agent_id,
            )
            result = self.invalid(FailureReason.SIGNATURE, mode)
        except StaleCredentialError as e:
            hours = self.max_age_ms / 3_600_000
            result = self.invalid(
                FailureReason.STALE,
                mode,
                f"Credential is stale: issued more than {hours:g}h ago",
            )
            logger.info("Rejected stale credential (age %d ms)", e.age_ms)
        except UnknownRecordError as e:
            if mode is VerificationMode.OFFLINE:
                message = "Permit not found in local cache (not cached)"
            else:
                message = "Permit not found"
            logger.info("Credential references unknown record %s (%s)", e.record_id, mode.value)
            result = self.invalid(FailureReason.UNKNOWN_RECORD, mode, message)
        except InfrastructureFailure:
            raise
        else:
            result = self.classify(record, mode)

        self.record_scan(result, agent_id)
        return result

    def parse_scan(
        self,
        text: str,
        transport: OpticalTransport,
        mode: VerificationMode,
    ) -> Union[SignedCredential, VerificationResult]:
        """Extract the credential from scanned text.

        Returns the credential, or the ``invalid`` result to report when the
        text is not a verification URI.  Nothing is logged here.
        """
        if not transport.matches(text):
            return self.invalid(FailureReason.UNRECOGNIZED_FORMAT, mode)
        try:
            return transport.from_uri(text)
        except URIParseError as e:
            logger.info("Scanned URI rejected: %s", e.message)
            return self.invalid(FailureReason.MALFORMED, mode, f"Invalid code: {e.message}")

    def invalid(
        self,
        reason: FailureReason,
        mode: VerificationMode,
        message: Optional[str] = None,
    ) -> VerificationResult:
        return VerificationResult(
            result=VerificationOutcome.INVALID,
            message=message or MESSAGES[reason],
            mode=mode,
            reason=reason,
        )

    def record_scan(self, result: VerificationResult, agent_id: Optional[str] = None) -> ScanLogEntry:
        """Append the audit entry for a terminal result."""
        entry = ScanLogEntry(
            outcome=result.result,
            mode=result.mode,
            timestamp=self.clock(),
            credential_id=result.credential_id,
            agent_id=agent_id,
            reason=result.reason,
        )
        try:
            self.log_sink.append_scan_log(entry)
        except (InfrastructureFailure, DatabaseError) as e:
            logger.error("Failed to record scan log entry: %s", e.message, exc_info=True)
        audit_log.scan_verified(
            outcome=result.result.value,
            mode=result.mode.value,
            reason=result.reason.value if result.reason else None,
            credential_id=result.credential_id,
            agent_id=agent_id,
        )
        return entry
