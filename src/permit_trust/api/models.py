# SPDX-License-Identifier: MPL-2.0
"""Request and response models for the Permit Trust API.

Field names on the wire are camelCase; the models accept either form.
"""

from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from permit_trust.core.models import (
    CardRef,
    FailureReason,
    PermitRecord,
    RecordSummary,
    ScanLogEntry,
    VerificationMode,
    VerificationOutcome,
    VerificationResult,
)


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class PermitCreateRequest(WireModel):
    """Request model for registering a permit record."""
    record_id: Optional[str] = Field(default=None, alias="id", min_length=1)
    holder_name: str = Field(alias="holderName", min_length=1)
    serial_number: str = Field(alias="serialNumber", min_length=1)
    zone: str = Field(min_length=1)
    permit_type: str = Field(alias="type", min_length=1)
    expiration_date: date = Field(alias="expirationDate")

    def to_record(self, record_id: str) -> PermitRecord:
        return PermitRecord(
            record_id=record_id,
            holder_name=self.holder_name,
            serial_number=self.serial_number,
            zone=self.zone,
            permit_type=self.permit_type,
            expiration_date=self.expiration_date,
        )


class CardResponse(WireModel):
    card_id: str = Field(alias="cardId")
    payload_encoded: str = Field(alias="payloadEncoded")
    signature: str
    version: int = 1

    @classmethod
    def from_card(cls, card: CardRef) -> "CardResponse":
        return cls(
            card_id=card.card_id,
            payload_encoded=card.payload_encoded,
            signature=card.signature,
            version=card.version,
        )

    def to_card(self) -> CardRef:
        return CardRef(
            card_id=self.card_id,
            payload_encoded=self.payload_encoded,
            signature=self.signature,
            version=self.version,
        )


class PermitResponse(WireModel):
    """A permit record as served by the authority."""
    record_id: str = Field(alias="id")
    holder_name: str = Field(alias="holderName")
    serial_number: str = Field(alias="serialNumber")
    zone: str
    permit_type: str = Field(alias="type")
    expiration_date: date = Field(alias="expirationDate")
    card: Optional[CardResponse] = None

    @classmethod
    def from_record(cls, record: PermitRecord) -> "PermitResponse":
        return cls(
            record_id=record.record_id,
            holder_name=record.holder_name,
            serial_number=record.serial_number,
            zone=record.zone,
            permit_type=record.permit_type,
            expiration_date=record.expiration_date,
            card=CardResponse.from_card(record.card) if record.card is not None else None,
        )

    def to_record(self) -> PermitRecord:
        return PermitRecord(
            record_id=self.record_id,
            holder_name=self.holder_name,
            serial_number=self.serial_number,
            zone=self.zone,
            permit_type=self.permit_type,
            expiration_date=self.expiration_date,
            card=self.card.to_card() if self.card is not None else None,
        )


class CredentialResponse(WireModel):
    """A freshly issued credential and the URI to print."""
    payload_encoded: str = Field(alias="payloadEncoded")
    signature: str
    uri: str
    card_id: str = Field(alias="cardId")


class PublicKeyResponse(WireModel):
    public_key: str = Field(alias="publicKey")
    algorithm: str
    kid: str


class VerifyRequest(WireModel):
    """Scanned text submitted for online verification."""
    qr_data: str = Field(alias="qrData")
    agent_id: Optional[str] = Field(default=None, alias="agentId")


class RecordSummaryResponse(WireModel):
    holder_name: str = Field(alias="holderName")
    serial_number: str = Field(alias="serialNumber")
    zone: str
    permit_type: str = Field(alias="type")
    expiration_date: date = Field(alias="expirationDate")

    def to_summary(self) -> RecordSummary:
        return RecordSummary(
            holder_name=self.holder_name,
            serial_number=self.serial_number,
            zone=self.zone,
            permit_type=self.permit_type,
            expiration_date=self.expiration_date,
        )


class VerifyResponse(WireModel):
    """Classification result; the same shape online and offline."""
    result: Literal["valid", "expired", "invalid"]
    record: Optional[RecordSummaryResponse] = None
    message: str

    @classmethod
    def from_result(cls, result: VerificationResult) -> "VerifyResponse":
        return cls.model_validate(result.to_response())

    def to_result(self, mode: VerificationMode = VerificationMode.ONLINE) -> VerificationResult:
        return VerificationResult(
            result=VerificationOutcome(self.result),
            message=self.message,
            mode=mode,
            record=self.record.to_summary() if self.record is not None else None,
        )


class ScanLogModel(WireModel):
    """Scan audit entry as exchanged between devices and the authority."""
    credential_id: Optional[str] = Field(default=None, alias="credentialId")
    agent_id: Optional[str] = Field(default=None, alias="agentId")
    timestamp: int
    outcome: Literal["valid", "expired", "invalid"]
    mode: Literal["online", "offline"]
    reason: Optional[FailureReason] = None

    @classmethod
    def from_entry(cls, entry: ScanLogEntry) -> "ScanLogModel":
        return cls.model_validate(entry.to_dict())

    def to_entry(self) -> ScanLogEntry:
        return ScanLogEntry.from_dict(self.model_dump())


class ScanLogList(WireModel):
    logs: List[ScanLogModel]


class ErrorResponse(BaseModel):
    message: str
    details: dict = {}
