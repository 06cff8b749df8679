# SPDX-License-Identifier: MPL-2.0
"""Optical transport: the verification URI and its QR rendering.

The URI is the only thing encoded in the printed symbol::

    peche://verify?d=<payload>&s=<signature>

Parameter names ``d`` and ``s`` are part of the compatibility contract.
Decoding a camera image back into text is left to the scanning library on the
device.
"""

from __future__ import annotations

import base64
import io
from urllib.parse import parse_qs, urlencode, urlsplit

import qrcode
from qrcode.constants import ERROR_CORRECT_M

from .exceptions import URIParseError
from .models import SignedCredential

DEFAULT_SCHEME = "peche"
VERIFY_HOST = "verify"
PAYLOAD_PARAM = "d"
SIGNATURE_PARAM = "s"


class OpticalTransport:
    """Builds and parses verification URIs for a fixed scheme."""

    def __init__(self, scheme: str = DEFAULT_SCHEME) -> None:
        self.scheme = scheme.lower()

    @property
    def prefix(self) -> str:
        return f"{self.scheme}://{VERIFY_HOST}"

    def to_uri(self, credential: SignedCredential) -> str:
        """Embed a credential in a verification URI.

        Values are percent-encoded where needed; URL-safe base64 passes
        through unchanged.
        """
        query = urlencode(
            [(PAYLOAD_PARAM, credential.payload_encoded), (SIGNATURE_PARAM, credential.signature)]
        )
        return f"{self.prefix}?{query}"

    def matches(self, text: str) -> bool:
        """Whether ``text`` names this scheme and the verify host, before a full parse."""
        if not isinstance(text, str):
            return False
        try:
            parts = urlsplit(text.strip())
        except ValueError:
            return False
        return parts.scheme.lower() == self.scheme and parts.netloc.lower() == VERIFY_HOST

    def from_uri(self, uri: str) -> SignedCredential:
        """Extract payload and signature from a scanned URI.

        Raises:
            URIParseError: If the scheme or host differ, or a parameter is
                missing or empty.
        """
        if not isinstance(uri, str):
            raise URIParseError("Scanned data is not text")
        try:
            parts = urlsplit(uri.strip())
        except ValueError as e:
            raise URIParseError(f"Unreadable URI: {e}") from e

        if parts.scheme.lower() != self.scheme or parts.netloc.lower() != VERIFY_HOST:
            raise URIParseError(
                "Unrecognized code format",
                {"scheme": parts.scheme, "host": parts.netloc},
            )

        params = parse_qs(parts.query, keep_blank_values=True)
        # Older cards carry standard base64 unescaped; parse_qs turns "+" into " ".
        payload = params.get(PAYLOAD_PARAM, [""])[0].replace(" ", "+")
        signature = params.get(SIGNATURE_PARAM, [""])[0].replace(" ", "+")
        if not payload or not signature:
            raise URIParseError("Missing credential data in code")
        return SignedCredential(payload_encoded=payload, signature=signature)

    def render_png(self, uri: str, box_size: int = 10, border: int = 4) -> bytes:
        """Render ``uri`` as a PNG QR code."""
        qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=box_size, border=border)
        qr.add_data(uri)
        qr.make(fit=True)
        image = qr.make_image()
        buffer = io.BytesIO()
        image.save(buffer)
        return buffer.getvalue()

    def render_data_uri(self, uri: str) -> str:
        """Render ``uri`` as a ``data:image/png`` URI for document templates."""
        encoded = base64.b64encode(self.render_png(uri)).decode("ascii")
        return f"data:image/png;base64,{encoded}"
