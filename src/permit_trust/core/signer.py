# SPDX-License-Identifier: MPL-2.0
"""Credential issuance."""
import logging
from typing import Callable

from .exceptions import SigningError
from .crypto import SigningKeyPair
from .models import SignedCredential, now_millis
from .payload import CURRENT_SCHEMA_VERSION, b64url_encode, encode

logger = logging.getLogger(__name__)


class Signer:
    """Issues signed credentials for record identifiers.

    Stateless apart from the read-only key pair, so one instance can serve
    concurrent issuance requests.  Issuing the same record twice yields two
    different credentials because the timestamp differs.
    """

    def __init__(
        self,
        key_pair: SigningKeyPair,
        clock: Callable[[], int] = now_millis,
        schema_version: int = CURRENT_SCHEMA_VERSION,
    ) -> None:
        self.key_pair = key_pair
        self.clock = clock
        self.schema_version = schema_version

    def issue(self, record_id: str) -> SignedCredential:
        """Build, encode and sign a payload for ``record_id``.

        Raises:
            EncodingError: If ``record_id`` is empty.
            SigningError: If the private key is unavailable or unusable.
        """
        payload = encode(record_id, self.clock(), self.schema_version)
        try:
            signature = self.key_pair.sign(payload)
        except SigningError:
            logger.error("Signing key %s unavailable for record %s", self.key_pair.kid, record_id)
            raise
        except Exception as e:
            raise SigningError(f"Signing failed: {e}", {"kid": self.key_pair.kid}) from e

        logger.debug("Issued credential for record %s with key %s", record_id, self.key_pair.kid)
        return SignedCredential(
            payload_encoded=b64url_encode(payload),
            signature=b64url_encode(signature),
        )
