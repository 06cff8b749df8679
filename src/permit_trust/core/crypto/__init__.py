# SPDX-License-Identifier: MPL-2.0
"""Ed25519 key material for credential signing and verification.

The issuing process owns a :class:`SigningKeyPair`; it is generated or loaded
once at startup and passed explicitly to the signer.  Verifying devices only
ever hold a :class:`VerificationKey`, built from the PEM text served by the
public key endpoint.
"""

from __future__ import annotations

import base64
import hashlib
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union, cast

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from permit_trust.core.exceptions import InvalidKeyError, SigningError

ALGORITHM = "Ed25519"


def hash_sha256(data: bytes) -> bytes:
    """Return the SHA-256 digest of ``data``."""

    return hashlib.sha256(data).digest()


def _raw_public_bytes(public_key: ed25519.Ed25519PublicKey) -> bytes:
    return cast(
        "bytes",
        public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        ),
    )


def derive_kid(public_key: ed25519.Ed25519PublicKey) -> str:
    """Stable key identifier derived from the raw public key."""

    return "ed25519-" + hash_sha256(_raw_public_bytes(public_key)).hex()[:16]


def _b64u(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


@dataclass(frozen=True)
class VerificationKey:
    """Public half of the issuing key, safe to distribute to any device."""

    public_key: ed25519.Ed25519PublicKey
    kid: str = ""

    def __post_init__(self) -> None:
        if not self.kid:
            object.__setattr__(self, "kid", derive_kid(self.public_key))

    def verify(self, signature: bytes, data: bytes) -> bool:
        """Check ``signature`` over ``data`` with the Ed25519 primitive."""
        try:
            self.public_key.verify(signature, data)
        except InvalidSignature:
            return False
        return True

    def public_bytes(self) -> bytes:
        return _raw_public_bytes(self.public_key)

    def to_pem(self) -> str:
        """SubjectPublicKeyInfo PEM, the form served to verifying devices."""
        return cast(
            "bytes",
            self.public_key.public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            ),
        ).decode("ascii")

    def to_jwk(self) -> dict:
        return {"kty": "OKP", "crv": "Ed25519", "kid": self.kid, "x": _b64u(self.public_bytes())}

    @classmethod
    def from_pem(cls, pem: Union[str, bytes]) -> VerificationKey:
        """Load a public key from PEM text.

        Raises:
            InvalidKeyError: If the data is not an Ed25519 public key.
        """
        data = pem.encode("ascii") if isinstance(pem, str) else pem
        try:
            key = serialization.load_pem_public_key(data)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise InvalidKeyError(f"Could not load public key: {e}") from e
        if not isinstance(key, ed25519.Ed25519PublicKey):
            raise InvalidKeyError("Unsupported public key type. Must be Ed25519.")
        return cls(public_key=key)

    @classmethod
    def from_bytes(cls, raw: bytes) -> VerificationKey:
        try:
            return cls(public_key=ed25519.Ed25519PublicKey.from_public_bytes(raw))
        except ValueError as e:
            raise InvalidKeyError(f"Invalid raw public key: {e}") from e

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> VerificationKey:
        return cls.from_pem(Path(path).read_bytes())


@dataclass
class SigningKeyPair:
    """Represents the issuing authority's Ed25519 key pair.

    The private key is read-only after construction.  ``private_key`` may be
    ``None`` when only public material could be provisioned; signing then
    fails with :class:`SigningError`.
    """

    private_key: Optional[ed25519.Ed25519PrivateKey]
    public_key: ed25519.Ed25519PublicKey
    kid: str = field(default="")

    def __post_init__(self) -> None:
        if not self.kid:
            self.kid = derive_kid(self.public_key)

    @classmethod
    def generate(cls) -> SigningKeyPair:
        """Generate a new key pair."""

        private_key = ed25519.Ed25519PrivateKey.generate()
        return cls(private_key=private_key, public_key=private_key.public_key())

    def sign(self, data: bytes) -> bytes:
        """Sign ``data`` exactly as given, without any framing."""
        if self.private_key is None:
            raise SigningError("Private key is not available", {"kid": self.kid})
        return cast("bytes", self.private_key.sign(data))

    def verification_key(self) -> VerificationKey:
        return VerificationKey(public_key=self.public_key, kid=self.kid)

    def public_key_pem(self) -> str:
        return self.verification_key().to_pem()

    def private_key_pem(self) -> bytes:
        """PKCS#8 PEM of the private key, for provisioning files only."""
        if self.private_key is None:
            raise SigningError("Private key is not available", {"kid": self.kid})
        return cast(
            "bytes",
            self.private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            ),
        )

    @classmethod
    def from_private_bytes(cls, private_bytes: bytes) -> SigningKeyPair:
        """Create a key pair from a raw 32-byte Ed25519 seed."""
        try:
            private_key = ed25519.Ed25519PrivateKey.from_private_bytes(private_bytes)
        except ValueError as e:
            raise SigningError(f"Malformed private key: {e}") from e
        return cls(private_key=private_key, public_key=private_key.public_key())

    @classmethod
    def from_private_pem(cls, pem: Union[str, bytes]) -> SigningKeyPair:
        """Load a PKCS#8 PEM private key.

        Raises:
            SigningError: If the PEM is unreadable or not an Ed25519 key.
        """
        data = pem.encode("ascii") if isinstance(pem, str) else pem
        try:
            private_key = serialization.load_pem_private_key(data, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise SigningError(f"Malformed private key: {e}") from e
        if not isinstance(private_key, ed25519.Ed25519PrivateKey):
            raise SigningError("Unsupported private key type. Must be Ed25519.")
        return cls(private_key=private_key, public_key=private_key.public_key())

    @classmethod
    def load(cls, path: Union[str, Path]) -> SigningKeyPair:
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            raise SigningError(f"Cannot read signing key {path}: {e}") from e
        return cls.from_private_pem(data)

    def save(self, path: Union[str, Path]) -> None:
        """Write the private key PEM with owner-only permissions."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(self.private_key_pem())

    @classmethod
    def load_or_generate(
        cls,
        path: Optional[Union[str, Path]] = None,
        pem: Optional[str] = None,
    ) -> SigningKeyPair:
        """Resolve the process key at startup.

        An explicit PEM wins over a key file; a missing file is created with
        a freshly generated key; with neither, an ephemeral key is generated.
        """
        if pem:
            return cls.from_private_pem(pem)
        if path is not None:
            if Path(path).exists():
                return cls.load(path)
            key_pair = cls.generate()
            key_pair.save(path)
            return key_pair
        return cls.generate()
