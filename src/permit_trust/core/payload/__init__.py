# SPDX-License-Identifier: MPL-2.0
"""Credential payload codec.

A payload is serialized as compact JSON with the fixed key order ``id``,
``ts``, ``v``::

    {"id":"R1","ts":1700000000000,"v":1}

UTF-8 encoded, no whitespace, non-ASCII characters emitted as-is.  Signatures
are computed over these exact bytes, so any conforming implementation must
produce them byte for byte.
"""

from __future__ import annotations

import base64
import json
from typing import Any, Callable

from jsonschema import Draft202012Validator

from permit_trust.core.exceptions import EncodingError, MalformedPayloadError
from permit_trust.core.models import CredentialPayload

CURRENT_SCHEMA_VERSION = 1

PAYLOAD_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "Permit credential payload",
    "type": "object",
    "required": ["id", "ts", "v"],
    "properties": {
        "id": {"type": "string"},
        "ts": {"type": "integer"},
        "v": {"type": "integer"},
    },
}

_validator = Draft202012Validator(PAYLOAD_SCHEMA)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def encode(record_id: str, issued_at: int, version: int) -> bytes:
    """Serialize a payload to its canonical bytes.

    Raises:
        EncodingError: If ``record_id`` is empty, ``version`` is not a positive
            integer or ``issued_at`` is not an integer.
    """
    if not isinstance(record_id, str) or not record_id:
        raise EncodingError("Record id must be a non-empty string", {"record_id": record_id})
    if not _is_int(version) or version <= 0:
        raise EncodingError("Schema version must be a positive integer", {"version": version})
    if not _is_int(issued_at):
        raise EncodingError("Issue timestamp must be an integer", {"issued_at": issued_at})

    document = {"id": record_id, "ts": issued_at, "v": version}
    try:
        return json.dumps(document, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    except UnicodeEncodeError as e:
        raise EncodingError(f"Record id is not encodable as UTF-8: {e}") from e


def decode(data: bytes) -> CredentialPayload:
    """Parse canonical payload bytes.

    Only structural violations are rejected; unexpected but well-typed values
    (an unknown schema version, extra keys) are passed through to the caller.

    Raises:
        MalformedPayloadError: If ``data`` is not a serialized payload.
    """
    try:
        document = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError, AttributeError) as e:
        raise MalformedPayloadError(f"Payload is not valid JSON: {e}") from e

    error = next(iter(_validator.iter_errors(document)), None)
    if error is not None:
        raise MalformedPayloadError(f"Payload structure invalid: {error.message}")

    return CredentialPayload(
        record_id=document["id"],
        issued_at=int(document["ts"]),
        schema_version=int(document["v"]),
    )


def encode_payload(payload: CredentialPayload) -> bytes:
    """Convenience wrapper for :func:`encode`."""

    return encode(payload.record_id, payload.issued_at, payload.schema_version)


def b64url_encode(data: bytes) -> str:
    """URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _canonical_decode(value: str, encoder: Callable[[bytes], bytes], padded: bool) -> bytes:
    if not isinstance(value, str):
        raise ValueError("Base64 value must be a string")
    normalized = value.replace("-", "+").replace("_", "/").rstrip("=")
    data = base64.b64decode(normalized + "=" * (-len(normalized) % 4), validate=True)

    canonical = encoder(data).decode("ascii")
    if not padded:
        canonical = canonical.rstrip("=")
    if value != canonical:
        raise ValueError("Base64 value is not in canonical form")
    return data


def b64url_decode(value: str) -> bytes:
    """Decode URL-safe base64 without padding, exactly as :func:`b64url_encode` writes it.

    A byte string has one accepted encoding: padding, standard-alphabet
    characters and non-zero spare bits in the last character are rejected.

    Raises:
        ValueError: If ``value`` is not canonical unpadded URL-safe base64.
    """
    return _canonical_decode(value, base64.urlsafe_b64encode, padded=False)


def b64std_decode(value: str) -> bytes:
    """Decode padded standard base64, the encoding of cards printed before URL-safe issuance.

    Raises:
        ValueError: If ``value`` is not canonical padded standard base64.
    """
    return _canonical_decode(value, base64.b64encode, padded=True)


def credential_decoder(signature: str) -> Callable[[str], bytes]:
    """Pick the decoder for both parts of a credential from its signature.

    Older cards always pad their 64-byte signature; current ones never do.
    """
    return b64std_decode if isinstance(signature, str) and signature.endswith("=") else b64url_decode
