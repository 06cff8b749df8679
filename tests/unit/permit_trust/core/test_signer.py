"""Unit tests for credential issuance."""

import pytest

from permit_trust.core.crypto import SigningKeyPair
from permit_trust.core.exceptions import EncodingError, SigningError
from permit_trust.core.payload import b64url_decode, decode
from permit_trust.core.signer import Signer

from conftest import NOW_MS, FakeClock


def test_issue_signs_exact_payload_bytes(key_pair, signer) -> None:
    credential = signer.issue("R1")

    payload_bytes = b64url_decode(credential.payload_encoded)
    assert payload_bytes == b'{"id":"R1","ts":%d,"v":1}' % NOW_MS
    assert key_pair.verification_key().verify(b64url_decode(credential.signature), payload_bytes)


def test_issue_uses_clock_and_current_version(signer, clock) -> None:
    clock.advance(1234)
    payload = decode(b64url_decode(signer.issue("R7").payload_encoded))
    assert payload.issued_at == NOW_MS + 1234
    assert payload.schema_version == 1


def test_reissue_differs_by_timestamp(key_pair) -> None:
    clock = FakeClock()
    signer = Signer(key_pair, clock=clock)
    first = signer.issue("R1")
    clock.advance(1)
    second = signer.issue("R1")
    assert first.payload_encoded != second.payload_encoded
    assert first.signature != second.signature


def test_issue_output_is_url_safe(signer) -> None:
    credential = signer.issue("Zone Nord/ß")
    for value in (credential.payload_encoded, credential.signature):
        assert "=" not in value and "+" not in value and "/" not in value


def test_empty_record_id(signer) -> None:
    with pytest.raises(EncodingError):
        signer.issue("")


def test_missing_private_key() -> None:
    public_only = SigningKeyPair(private_key=None, public_key=SigningKeyPair.generate().public_key)
    with pytest.raises(SigningError):
        Signer(public_only).issue("R1")


def test_unexpected_signing_failure_is_wrapped(key_pair, monkeypatch) -> None:
    broken = SigningKeyPair(private_key=key_pair.private_key, public_key=key_pair.public_key)

    def explode(data: bytes) -> bytes:
        raise RuntimeError("hsm offline")

    monkeypatch.setattr(broken, "sign", explode)
    with pytest.raises(SigningError, match="hsm offline"):
        Signer(broken).issue("R1")
