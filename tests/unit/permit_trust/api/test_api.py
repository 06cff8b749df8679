# SPDX-License-Identifier: MPL-2.0
"""Tests for the authority HTTP API."""

import pytest
from fastapi.testclient import TestClient

from permit_trust.api.main import create_app
from permit_trust.config import Settings
from permit_trust.core.db import RecordStore
from permit_trust.core.models import SignedCredential
from permit_trust.core.payload import b64url_decode, b64url_encode, encode
from permit_trust.core.signer import Signer
from permit_trust.core.transport import OpticalTransport

PERMIT = {
    "id": "R1",
    "holderName": "Jean Dupont",
    "serialNumber": "SN-0001",
    "zone": "Zone A",
    "type": "Recreational",
    "expirationDate": "2030-01-01",
}


@pytest.fixture
def store():
    with RecordStore() as store:
        yield store


@pytest.fixture
def client(key_pair, store):
    settings = Settings(trusted_hosts=["testserver"], rate_limit="1000/minute")
    app = create_app(settings, key_pair=key_pair, store=store)
    with TestClient(app) as client:
        yield client


def issue(client, record_id="R1"):
    response = client.post(f"/api/permits/{record_id}/credentials")
    assert response.status_code == 201
    return response.json()


class TestPermits:
    def test_create_and_get(self, client):
        response = client.post("/api/permits", json=PERMIT)
        assert response.status_code == 201
        assert response.json()["holderName"] == "Jean Dupont"
        assert response.json()["card"] is None

        fetched = client.get("/api/permits/R1")
        assert fetched.status_code == 200
        assert fetched.json()["expirationDate"] == "2030-01-01"

    def test_create_generates_id(self, client):
        body = {k: v for k, v in PERMIT.items() if k != "id"}
        response = client.post("/api/permits", json=body)
        assert response.status_code == 201
        assert response.json()["id"]

    def test_duplicate_is_conflict(self, client):
        client.post("/api/permits", json=PERMIT)
        assert client.post("/api/permits", json=PERMIT).status_code == 409

    def test_validation_error(self, client):
        response = client.post("/api/permits", json={**PERMIT, "expirationDate": "someday"})
        assert response.status_code == 422

    def test_missing_permit(self, client):
        response = client.get("/api/permits/nope")
        assert response.status_code == 404
        assert response.json() == {"message": "Permit nope not found", "details": {"record_id": "nope"}}

    def test_list(self, client):
        client.post("/api/permits", json=PERMIT)
        client.post("/api/permits", json={**PERMIT, "id": "R2"})
        assert [p["id"] for p in client.get("/api/permits").json()] == ["R1", "R2"]


class TestCredentials:
    def test_issue_credential(self, client, key_pair):
        client.post("/api/permits", json=PERMIT)
        body = issue(client)

        assert body["uri"] == f"peche://verify?d={body['payloadEncoded']}&s={body['signature']}"
        assert key_pair.verification_key().verify(
            b64url_decode(body["signature"]), b64url_decode(body["payloadEncoded"])
        )
        assert client.get("/api/permits/R1").json()["card"]["cardId"] == body["cardId"]

    def test_reissue_bumps_card_version(self, client):
        client.post("/api/permits", json=PERMIT)
        issue(client)
        issue(client)
        assert client.get("/api/permits/R1").json()["card"]["version"] == 2

    def test_issue_for_unknown_permit(self, client):
        assert client.post("/api/permits/nope/credentials").status_code == 404

    def test_qr_png(self, client):
        client.post("/api/permits", json=PERMIT)
        assert client.get("/api/permits/R1/qr.png").status_code == 404

        issue(client)
        response = client.get("/api/permits/R1/qr.png")
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content.startswith(b"\x89PNG")

    def test_public_key(self, client, key_pair):
        body = client.get("/api/public-key").json()
        assert body == {"publicKey": key_pair.public_key_pem(), "algorithm": "Ed25519", "kid": key_pair.kid}


class TestScans:
    def test_verify_valid(self, client, store):
        client.post("/api/permits", json=PERMIT)
        uri = issue(client)["uri"]

        response = client.post("/api/scans/verify", json={"qrData": uri, "agentId": "agent-1"})

        assert response.status_code == 200
        body = response.json()
        assert body["result"] == "valid"
        assert body["record"] == {
            "holderName": "Jean Dupont",
            "serialNumber": "SN-0001",
            "zone": "Zone A",
            "type": "Recreational",
            "expirationDate": "2030-01-01",
        }
        logs = store.list_scan_logs()
        assert len(logs) == 1
        assert logs[0].agent_id == "agent-1"
        assert logs[0].credential_id is not None

    def test_verify_expired(self, client):
        client.post("/api/permits", json={**PERMIT, "expirationDate": "2020-01-01"})
        body = client.post("/api/scans/verify", json={"qrData": issue(client)["uri"]}).json()
        assert body["result"] == "expired"
        assert body["record"]["expirationDate"] == "2020-01-01"

    def test_verify_tampered_signature(self, client):
        client.post("/api/permits", json=PERMIT)
        body = issue(client)
        signature = ("B" if body["signature"][0] == "A" else "A") + body["signature"][1:]
        uri = f"peche://verify?d={body['payloadEncoded']}&s={signature}"

        result = client.post("/api/scans/verify", json={"qrData": uri}).json()
        assert result["result"] == "invalid"
        assert "record" not in result
        assert "signature" in result["message"]

    def test_verify_unknown_record(self, client, key_pair):
        uri = OpticalTransport().to_uri(Signer(key_pair).issue("ghost"))
        body = client.post("/api/scans/verify", json={"qrData": uri}).json()
        assert body["result"] == "invalid"
        assert "not found" in body["message"]

    def test_verify_stale(self, client, key_pair):
        client.post("/api/permits", json=PERMIT)
        payload = encode("R1", 1_000, 1)
        credential = SignedCredential(b64url_encode(payload), b64url_encode(key_pair.sign(payload)))
        body = client.post("/api/scans/verify", json={"qrData": OpticalTransport().to_uri(credential)}).json()
        assert body["result"] == "invalid"
        assert "stale" in body["message"]

    def test_verify_unrecognized_is_logged(self, client, store):
        body = client.post("/api/scans/verify", json={"qrData": "hello world"}).json()
        assert body["result"] == "invalid"
        assert store.list_scan_logs()[0].reason.value == "unrecognized_format"

    def test_scan_log_ingest_and_list(self, client):
        entry = {
            "credentialId": "card-1",
            "agentId": "agent-2",
            "timestamp": 1_700_000_000_000,
            "outcome": "invalid",
            "mode": "offline",
            "reason": "not_a_reason",
        }
        assert client.post("/api/scans/logs", json=entry).status_code == 422

        entry["reason"] = "unknown_record"
        response = client.post("/api/scans/logs", json=entry)
        assert response.status_code == 201
        assert response.json() == {"status": "recorded"}

        logs = client.get("/api/scans/logs", params={"limit": 10}).json()["logs"]
        assert logs == [entry]


class TestPlumbing:
    def test_health(self, client, key_pair):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["kid"] == key_pair.kid
        assert body["stats"] == {"records": 0}

    def test_security_headers_and_request_id(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_untrusted_host_rejected(self, client):
        assert client.get("/health", headers={"Host": "evil.example"}).status_code == 400

    def test_rate_limit(self, key_pair, store):
        app = create_app(Settings(trusted_hosts=["testserver"], rate_limit="2/minute"), key_pair, store)
        with TestClient(app) as client:
            codes = [client.get("/api/permits").status_code for _ in range(3)]
        assert codes == [200, 200, 429]
