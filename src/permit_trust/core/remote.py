# SPDX-License-Identifier: MPL-2.0
"""HTTP client for the issuing authority.

Used by verifying devices as the online :class:`RecordSource` and as the
primary scan log sink.  Every failure that is not a definitive answer from the
authority (timeouts, connection errors, 5xx, unreadable bodies) surfaces as
:class:`InfrastructureFailure` so the caller can fall back to the cache.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from permit_trust.api.models import PermitResponse, PublicKeyResponse, ScanLogModel, VerifyResponse

from .crypto import VerificationKey
from .exceptions import InfrastructureFailure, InvalidKeyError
from .models import PermitRecord, ScanLogEntry, VerificationMode, VerificationResult
from .sources import DEFAULT_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class AuthorityClient:
    """Synchronous client for the authority's HTTP API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise InfrastructureFailure(f"Authority request timed out: {method} {path}") from e
        except httpx.TransportError as e:
            raise InfrastructureFailure(f"Authority unreachable: {e}", {"url": self.base_url}) from e

        if response.status_code >= 500:
            raise InfrastructureFailure(
                f"Authority error {response.status_code} on {method} {path}",
                {"status_code": response.status_code},
            )
        return response

    def _expect_ok(self, response: httpx.Response) -> None:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise InfrastructureFailure(
                f"Unexpected authority response {response.status_code}",
                {"status_code": response.status_code, "body": response.text[:200]},
            ) from e

    def fetch_record(self, record_id: str) -> Optional[PermitRecord]:
        """Look up a record; ``None`` if the authority does not know it."""
        response = self._request("GET", f"/api/permits/{quote(record_id, safe='')}")
        if response.status_code == 404:
            return None
        self._expect_ok(response)
        try:
            return PermitResponse.model_validate(response.json()).to_record()
        except (ValueError, ValidationError) as e:
            raise InfrastructureFailure(f"Unreadable record from authority: {e}") from e

    def verify_remote(self, qr_data: str, agent_id: Optional[str] = None) -> VerificationResult:
        """Have the authority verify scanned text and log the scan itself."""
        body = {"qrData": qr_data}
        if agent_id is not None:
            body["agentId"] = agent_id
        response = self._request("POST", "/api/scans/verify", json=body)
        self._expect_ok(response)
        try:
            return VerifyResponse.model_validate(response.json()).to_result(VerificationMode.ONLINE)
        except (ValueError, ValidationError) as e:
            raise InfrastructureFailure(f"Unreadable verification response: {e}") from e

    def append_scan_log(self, entry: ScanLogEntry) -> None:
        payload = ScanLogModel.from_entry(entry).model_dump(mode="json", by_alias=True)
        response = self._request("POST", "/api/scans/logs", json=payload)
        self._expect_ok(response)

    def fetch_public_key(self) -> VerificationKey:
        """Download the authority's public key for offline provisioning.

        Raises:
            InvalidKeyError: If the served key is not an Ed25519 public key.
        """
        response = self._request("GET", "/api/public-key")
        self._expect_ok(response)
        try:
            served = PublicKeyResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise InfrastructureFailure(f"Unreadable public key response: {e}") from e
        key = VerificationKey.from_pem(served.public_key)
        if served.kid and served.kid != key.kid:
            raise InvalidKeyError("Served key id does not match key material", {"kid": served.kid})
        logger.info("Fetched authority public key %s", key.kid)
        return key

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "AuthorityClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
