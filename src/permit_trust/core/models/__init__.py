# SPDX-License-Identifier: MPL-2.0
"""Data models for Permit Trust."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional


def now_millis() -> int:
    """Return the current UTC time as epoch milliseconds."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


class VerificationOutcome(str, Enum):
    """Terminal outcome of a verification attempt."""

    VALID = "valid"
    EXPIRED = "expired"
    INVALID = "invalid"


class VerificationMode(str, Enum):
    """Where the record behind a credential was resolved."""

    ONLINE = "online"
    OFFLINE = "offline"


class FailureReason(str, Enum):
    """Why a credential was classified ``invalid``."""

    MALFORMED = "malformed"
    SIGNATURE = "signature"
    STALE = "stale"
    UNKNOWN_RECORD = "unknown_record"
    CONNECTIVITY = "connectivity"
    UNRECOGNIZED_FORMAT = "unrecognized_format"


@dataclass(frozen=True)
class CredentialPayload:
    """The compact record reference that gets signed."""

    record_id: str
    issued_at: int
    schema_version: int


@dataclass(frozen=True)
class SignedCredential:
    """URL-safe base64 payload plus its detached Ed25519 signature."""

    payload_encoded: str
    signature: str

    def to_dict(self) -> dict[str, str]:
        return {"payloadEncoded": self.payload_encoded, "signature": self.signature}


@dataclass(frozen=True)
class CardRef:
    """A printed card carrying a credential for a record."""

    card_id: str
    payload_encoded: str
    signature: str
    version: int = 1

    @property
    def credential(self) -> SignedCredential:
        return SignedCredential(self.payload_encoded, self.signature)

    def to_dict(self) -> dict[str, Any]:
        return {
            "card_id": self.card_id,
            "payload_encoded": self.payload_encoded,
            "signature": self.signature,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CardRef:
        return cls(
            card_id=data["card_id"],
            payload_encoded=data["payload_encoded"],
            signature=data["signature"],
            version=int(data.get("version", 1)),
        )


def parse_expiration_date(value: Any) -> date:
    """Parse an expiration date given as a ``date`` or an ISO 8601 string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    raise ValueError(f"Unsupported expiration date: {value!r}")


@dataclass(frozen=True)
class RecordSummary:
    """The subset of a record shown to the verifying agent."""

    holder_name: str
    serial_number: str
    zone: str
    permit_type: str
    expiration_date: date

    def to_dict(self) -> dict[str, str]:
        """Wire form used by the verification response."""
        return {
            "holderName": self.holder_name,
            "serialNumber": self.serial_number,
            "zone": self.zone,
            "type": self.permit_type,
            "expirationDate": self.expiration_date.isoformat(),
        }


@dataclass(frozen=True)
class PermitRecord:
    """A permit as known to the issuing authority.

    ``card`` is ``None`` until a credential has been issued and printed for
    the record; consumers must handle that case explicitly.
    """

    record_id: str
    holder_name: str
    serial_number: str
    zone: str
    permit_type: str
    expiration_date: date
    card: Optional[CardRef] = None

    def expires_at_millis(self) -> int:
        """Start of the expiration day (UTC) as epoch milliseconds."""
        start = datetime(
            self.expiration_date.year,
            self.expiration_date.month,
            self.expiration_date.day,
            tzinfo=timezone.utc,
        )
        return int(start.timestamp() * 1000)

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at_millis() <= now_ms

    def summary(self) -> RecordSummary:
        return RecordSummary(
            holder_name=self.holder_name,
            serial_number=self.serial_number,
            zone=self.zone,
            permit_type=self.permit_type,
            expiration_date=self.expiration_date,
        )

    def with_card(self, card: CardRef) -> PermitRecord:
        return PermitRecord(
            record_id=self.record_id,
            holder_name=self.holder_name,
            serial_number=self.serial_number,
            zone=self.zone,
            permit_type=self.permit_type,
            expiration_date=self.expiration_date,
            card=card,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "holder_name": self.holder_name,
            "serial_number": self.serial_number,
            "zone": self.zone,
            "permit_type": self.permit_type,
            "expiration_date": self.expiration_date.isoformat(),
            "card": self.card.to_dict() if self.card is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PermitRecord:
        card_data = data.get("card")
        return cls(
            record_id=data["record_id"],
            holder_name=data["holder_name"],
            serial_number=data["serial_number"],
            zone=data["zone"],
            permit_type=data["permit_type"],
            expiration_date=parse_expiration_date(data["expiration_date"]),
            card=CardRef.from_dict(card_data) if card_data else None,
        )


@dataclass(frozen=True)
class VerificationCacheEntry:
    """Last known snapshot of a record held on the verifying device."""

    record_id: str
    record: PermitRecord
    cached_at: int


@dataclass(frozen=True)
class ScanLogEntry:
    """Audit trail entry written after every completed verification."""

    outcome: VerificationOutcome
    mode: VerificationMode
    timestamp: int = field(default_factory=now_millis)
    credential_id: Optional[str] = None
    agent_id: Optional[str] = None
    reason: Optional[FailureReason] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "credential_id": self.credential_id,
            "agent_id": self.agent_id,
            "timestamp": self.timestamp,
            "outcome": self.outcome.value,
            "mode": self.mode.value,
            "reason": self.reason.value if self.reason is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScanLogEntry:
        reason = data.get("reason")
        return cls(
            outcome=VerificationOutcome(data["outcome"]),
            mode=VerificationMode(data["mode"]),
            timestamp=int(data["timestamp"]),
            credential_id=data.get("credential_id"),
            agent_id=data.get("agent_id"),
            reason=FailureReason(reason) if reason else None,
        )


@dataclass(frozen=True)
class VerificationResult:
    """Classified outcome of a scan, identical in shape online and offline."""

    result: VerificationOutcome
    message: str
    mode: VerificationMode
    record: Optional[RecordSummary] = None
    reason: Optional[FailureReason] = None
    credential_id: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.result is VerificationOutcome.VALID

    def to_response(self) -> dict[str, Any]:
        """Return the interoperable ``{result, record?, message}`` document."""
        response: dict[str, Any] = {"result": self.result.value}
        if self.record is not None:
            response["record"] = self.record.to_dict()
        response["message"] = self.message
        return response
