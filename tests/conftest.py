"""Shared fixtures for the Permit Trust test suite."""

from datetime import date

import httpx
import pytest

from permit_trust.config import get_settings
from permit_trust.core.cache import VerificationCache
from permit_trust.core.crypto import SigningKeyPair
from permit_trust.core.models import PermitRecord
from permit_trust.core.signer import Signer
from permit_trust.core.sources import MemoryScanLogSink
from permit_trust.core.transport import OpticalTransport
from permit_trust.core.verification import Verifier

# 2025-06-01T12:00:00Z
NOW_MS = 1_748_779_200_000


class FakeClock:
    """Settable epoch-millisecond clock."""

    def __init__(self, now: int = NOW_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class DictSource:
    """In-memory record source that counts lookups."""

    def __init__(self, *records: PermitRecord) -> None:
        self.records = {record.record_id: record for record in records}
        self.calls = 0

    def fetch_record(self, record_id):
        self.calls += 1
        return self.records.get(record_id)


class FailingSource:
    """Record source that is always unreachable."""

    def __init__(self, exc: Exception) -> None:
        self.exc = exc
        self.calls = 0

    def fetch_record(self, record_id):
        self.calls += 1
        raise self.exc


def make_record(record_id: str = "R1", expires: date = date(2030, 1, 1)) -> PermitRecord:
    return PermitRecord(
        record_id=record_id,
        holder_name="Jean Dupont",
        serial_number="SN-0001",
        zone="Zone A",
        permit_type="Recreational",
        expiration_date=expires,
    )


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    """Settings are cached per process; isolate each test from the caller's env."""
    for name in (
        "PERMIT_TRUST_SIGNING_KEY_PATH",
        "PERMIT_TRUST_PRIVATE_KEY",
        "PERMIT_TRUST_AUTHORITY_URL",
        "PERMIT_TRUST_URI_SCHEME",
        "PERMIT_TRUST_MAX_CREDENTIAL_AGE_SECONDS",
        "PERMIT_TRUST_RATE_LIMIT",
        "PERMIT_TRUST_STORE_PATH",
        "PERMIT_TRUST_CACHE_PATH",
        "PERMIT_TRUST_LOG_JSON",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(scope="session")
def key_pair():
    return SigningKeyPair.generate()


@pytest.fixture
def signer(key_pair, clock):
    return Signer(key_pair, clock=clock)


@pytest.fixture
def sink():
    return MemoryScanLogSink()


@pytest.fixture
def verifier(key_pair, sink, clock):
    return Verifier(key_pair.verification_key(), sink, clock=clock)


@pytest.fixture
def transport():
    return OpticalTransport()


@pytest.fixture
def cache(clock):
    cache = VerificationCache(":memory:", clock=clock)
    yield cache
    cache.close()


@pytest.fixture
def record():
    return make_record()


def bridge(test_client):
    """httpx transport that forwards device requests to an in-process authority app."""

    def handler(request: httpx.Request) -> httpx.Response:
        response = test_client.request(
            request.method,
            request.url.raw_path.decode("ascii"),
            content=request.content,
            headers={"content-type": request.headers.get("content-type", "application/json")},
        )
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    return httpx.MockTransport(handler)
