# SPDX-License-Identifier: MPL-2.0
"""End-to-end flows: issue at the authority, scan on a device, online and offline."""

from datetime import date

import pytest
from fastapi.testclient import TestClient

from permit_trust.api.main import create_app
from permit_trust.config import Settings
from permit_trust.core.cache import PendingScanLogQueue, VerificationCache
from permit_trust.core.db import RecordStore
from permit_trust.core.exceptions import InfrastructureFailure
from permit_trust.core.models import FailureReason, VerificationMode, VerificationOutcome, now_millis
from permit_trust.core.orchestrator import VerificationOrchestrator
from permit_trust.core.remote import AuthorityClient
from permit_trust.core.sources import FallbackScanLogSink
from permit_trust.core.verification import Verifier

from conftest import FakeClock, bridge

PERMIT = {
    "id": "R1",
    "holderName": "Jean Dupont",
    "serialNumber": "SN-0001",
    "zone": "Zone A",
    "type": "Recreational",
    "expirationDate": "2030-01-01",
}


class Device:
    """A verifying device: cache, pending log queue and an orchestrator."""

    def __init__(self, key, client, online=True):
        self.clock = FakeClock(now_millis())
        self.cache = VerificationCache(clock=self.clock)
        self.queue = PendingScanLogQueue()
        self.online = online
        sink = FallbackScanLogSink(client, self.queue) if client is not None else self.queue
        self.orchestrator = VerificationOrchestrator(
            Verifier(key, sink, clock=self.clock),
            self.cache,
            online_source=client,
            connectivity=lambda: self.online,
            agent_id="agent-1",
        )

    def scan(self, text):
        return self.orchestrator.scan(text)

    def close(self):
        self.cache.close()
        self.queue.close()


@pytest.fixture
def authority(key_pair):
    store = RecordStore()
    app = create_app(Settings(trusted_hosts=["testserver"]), key_pair=key_pair, store=store)
    with TestClient(app) as client:
        yield client, store
    store.close()


@pytest.fixture
def device(authority):
    test_client, _ = authority
    client = AuthorityClient("http://authority.test", transport=bridge(test_client))
    device = Device(client.fetch_public_key(), client)
    yield device
    device.close()
    client.close()


def register_and_issue(test_client, **overrides):
    test_client.post("/api/permits", json={**PERMIT, **overrides})
    return test_client.post(f"/api/permits/{overrides.get('id', 'R1')}/credentials").json()["uri"]


def test_valid_permit_online(authority, device):
    test_client, store = authority
    uri = register_and_issue(test_client)

    result = device.scan(uri)

    assert result.result is VerificationOutcome.VALID
    assert result.mode is VerificationMode.ONLINE
    assert result.record.holder_name == "Jean Dupont"
    logs = store.list_scan_logs()
    assert len(logs) == 1
    assert logs[0].credential_id == store.get_card("R1").card_id
    assert len(device.queue) == 0


def test_expired_permit(authority, device):
    test_client, _ = authority
    uri = register_and_issue(test_client, expirationDate="2020-01-01")
    result = device.scan(uri)
    assert result.result is VerificationOutcome.EXPIRED
    assert result.record.expiration_date == date(2020, 1, 1)


def test_tampered_signature(authority, device):
    test_client, _ = authority
    uri = register_and_issue(test_client)
    head, signature = uri.split("&s=")
    tampered = f"{head}&s={'B' if signature[0] == 'A' else 'A'}{signature[1:]}"

    result = device.scan(tampered)

    assert result.result is VerificationOutcome.INVALID
    assert result.reason is FailureReason.SIGNATURE
    assert result.record is None


def test_offline_parity_after_online_scan(authority, device):
    test_client, store = authority
    uri = register_and_issue(test_client)

    online = device.scan(uri)
    device.online = False
    offline = device.scan(uri)

    assert offline.mode is VerificationMode.OFFLINE
    assert online.to_response()["result"] == offline.to_response()["result"]
    assert online.to_response()["record"] == offline.to_response()["record"]
    # the offline scan still reached the authority's log sink
    assert len(store.list_scan_logs()) == 2


def test_offline_without_cache(authority, device):
    test_client, _ = authority
    uri = register_and_issue(test_client)
    device.online = False

    result = device.scan(uri)

    assert result.reason is FailureReason.UNKNOWN_RECORD
    assert "not cached" in result.message


def test_rescan_is_idempotent(authority, device):
    test_client, store = authority
    uri = register_and_issue(test_client)

    first = device.scan(uri)
    device.clock.advance(5_000)
    second = device.scan(uri)

    assert first.result == second.result
    assert first.record == second.record
    logs = store.list_scan_logs()
    assert len(logs) == 2
    assert sorted(entry.timestamp for entry in logs) == [device.clock.now - 5_000, device.clock.now]


def test_authority_down_queues_logs_and_sync_delivers(authority, key_pair):
    test_client, store = authority
    uri = register_and_issue(test_client)

    class DownClient:
        def fetch_record(self, record_id):
            raise InfrastructureFailure("authority unreachable")

        def append_scan_log(self, entry):
            raise InfrastructureFailure("authority unreachable")

    device = Device(key_pair.verification_key(), DownClient())
    try:
        device.cache.put(store.fetch_record("R1"))
        result = device.scan(uri)
        assert result.is_valid
        assert result.mode is VerificationMode.OFFLINE
        assert len(device.queue) == 1
        assert store.list_scan_logs() == []

        with AuthorityClient("http://authority.test", transport=bridge(test_client)) as client:
            assert device.queue.drain(client) == 1
        assert store.list_scan_logs()[0].mode is VerificationMode.OFFLINE
    finally:
        device.close()
