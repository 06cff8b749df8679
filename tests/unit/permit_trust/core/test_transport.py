"""Unit tests for the verification URI and QR rendering."""

import pytest

from permit_trust.core.exceptions import URIParseError
from permit_trust.core.models import SignedCredential
from permit_trust.core.transport import OpticalTransport

CREDENTIAL = SignedCredential("eyJpZCI6IlIxIn0", "c2lnLV9uYXR1cmU")


def test_to_uri_shape(transport) -> None:
    assert transport.to_uri(CREDENTIAL) == "peche://verify?d=eyJpZCI6IlIxIn0&s=c2lnLV9uYXR1cmU"


def test_round_trip(transport, signer) -> None:
    credential = signer.issue("R1")
    assert transport.from_uri(transport.to_uri(credential)) == credential


def test_custom_scheme() -> None:
    transport = OpticalTransport("Permit")
    uri = transport.to_uri(CREDENTIAL)
    assert uri.startswith("permit://verify?")
    assert transport.from_uri(uri) == CREDENTIAL
    with pytest.raises(URIParseError):
        OpticalTransport().from_uri(uri)


def test_parameter_order_does_not_matter(transport) -> None:
    uri = "peche://verify?s=c2lnLV9uYXR1cmU&d=eyJpZCI6IlIxIn0"
    assert transport.from_uri(uri) == CREDENTIAL


def test_legacy_standard_base64_survives_query_parsing(transport) -> None:
    """Older cards carry unescaped standard base64 with '+', '/' and '='."""
    uri = "peche://verify?d=ab+c/d==&s=x+y/z="
    assert transport.from_uri(uri) == SignedCredential("ab+c/d==", "x+y/z=")


def test_percent_encoded_values(transport) -> None:
    uri = "peche://verify?d=ab%2Bc%2Fd%3D%3D&s=xyz"
    assert transport.from_uri(uri).payload_encoded == "ab+c/d=="


@pytest.mark.parametrize(
    "uri",
    [
        "https://verify?d=a&s=b",
        "peche://check?d=a&s=b",
        "peche://verify?d=a",
        "peche://verify?s=b",
        "peche://verify?d=&s=b",
        "peche://verify",
        "",
    ],
)
def test_from_uri_rejects(transport, uri: str) -> None:
    with pytest.raises(URIParseError):
        transport.from_uri(uri)


def test_from_uri_rejects_non_text(transport) -> None:
    with pytest.raises(URIParseError):
        transport.from_uri(None)  # type: ignore[arg-type]


def test_matches(transport) -> None:
    assert transport.matches("peche://verify?d=a&s=b")
    assert transport.matches("  PECHE://VERIFY?d=a&s=b")
    assert not transport.matches("https://example.com")
    assert not transport.matches("peche://verify.example?d=a&s=b")
    assert not transport.matches("peche://verifyx?d=a&s=b")
    assert not transport.matches("peche://[verify?d=a")
    assert not transport.matches(None)  # type: ignore[arg-type]


def test_render_png(transport) -> None:
    png = transport.render_png(transport.to_uri(CREDENTIAL))
    assert png.startswith(b"\x89PNG\r\n\x1a\n")


def test_render_data_uri(transport) -> None:
    assert transport.render_data_uri(transport.to_uri(CREDENTIAL)).startswith("data:image/png;base64,iVBOR")
