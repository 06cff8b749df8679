# SPDX-License-Identifier: MPL-2.0
"""
Scan-to-result driver for verifying devices.

The orchestrator owns the scan state machine::

    IDLE -> SCANNING -> DECODING -> VERIFYING -> RESULT -> IDLE

It prefers the online record source, falls back once to the local cache when
the online path fails for infrastructure reasons, and guarantees that every
scan which reaches DECODING ends in exactly one logged result.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from .cache import VerificationCache
from .exceptions import DatabaseError, InfrastructureFailure
from .models import (
    FailureReason,
    PermitRecord,
    SignedCredential,
    VerificationMode,
    VerificationResult,
)
from .sources import RecordSource
from .transport import OpticalTransport
from .verification import Verifier

logger = logging.getLogger(__name__)


class ScanState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    DECODING = "decoding"
    VERIFYING = "verifying"
    RESULT = "result"


class _CachingSource:
    """Writes every record resolved online into the device cache."""

    def __init__(self, source: RecordSource, cache: VerificationCache) -> None:
        self.source = source
        self.cache = cache

    def fetch_record(self, record_id: str) -> Optional[PermitRecord]:
        try:
            record = self.source.fetch_record(record_id)
        except DatabaseError as e:
            raise InfrastructureFailure(f"Online record store unavailable: {e.message}", e.details) from e
        if record is not None:
            try:
                self.cache.put(record)
            except DatabaseError as e:
                logger.warning("Could not cache record %s: %s", record_id, e.message)
        return record


class VerificationOrchestrator:
    """Drives one scan at a time through verification.

    Args:
        verifier: Verifier configured with the authority's public key
        cache: Device cache, used as the offline record source
        online_source: Authority record source; ``None`` for offline-only devices
        transport: URI parser for scanned text
        connectivity: Optional probe; when it returns ``False`` the online
            attempt is skipped
        agent_id: Identifier of the verifying agent recorded in scan logs
    """

    def __init__(
        self,
        verifier: Verifier,
        cache: VerificationCache,
        online_source: Optional[RecordSource] = None,
        transport: Optional[OpticalTransport] = None,
        connectivity: Optional[Callable[[], bool]] = None,
        agent_id: Optional[str] = None,
    ) -> None:
        self.verifier = verifier
        self.cache = cache
        self.online_source = online_source
        self.transport = transport or OpticalTransport()
        self.connectivity = connectivity
        self.agent_id = agent_id
        self.last_result: Optional[VerificationResult] = None
        self._state = ScanState.IDLE
        self._state_lock = threading.Lock()
        self._in_flight = threading.Lock()

    @property
    def state(self) -> ScanState:
        return self._state

    def _transition(self, allowed, target: ScanState) -> bool:
        with self._state_lock:
            if self._state not in allowed:
                return False
            self._state = target
            return True

    def start_scan(self) -> bool:
        """Open the camera; returns ``False`` while a verification is running."""
        return self._transition((ScanState.IDLE, ScanState.RESULT, ScanState.SCANNING), ScanState.SCANNING)

    def cancel(self) -> bool:
        """Abandon the current scan.  Not possible once verifying has begun."""
        return self._transition((ScanState.SCANNING,), ScanState.IDLE)

    def reset(self) -> bool:
        """Return to IDLE after a result so the operator can rescan."""
        with self._state_lock:
            if self._state in (ScanState.DECODING, ScanState.VERIFYING):
                return False
            self._state = ScanState.IDLE
            self.last_result = None
            return True

    def on_scan_success(self, text: str, agent_id: Optional[str] = None) -> Optional[VerificationResult]:
        """Handle text decoded from an optical symbol.

        Returns the classified result, or ``None`` if the event was ignored
        because no scan is open or another one is already being verified.
        """
        if not self._in_flight.acquire(blocking=False):
            logger.info("Ignoring scan while another verification is in flight")
            return None
        try:
            if not self._transition((ScanState.SCANNING,), ScanState.DECODING):
                logger.info("Ignoring scan event in state %s", self._state.value)
                return None

            agent_id = agent_id if agent_id is not None else self.agent_id
            online = self._online_available()
            result = None
            try:
                result = self._decode_and_verify(text, agent_id, online)
            except Exception:
                logger.exception("Verification aborted by an unexpected error")
                result = self._connectivity_failure(VerificationMode.OFFLINE, agent_id)
            finally:
                with self._state_lock:
                    self.last_result = result
                    self._state = ScanState.RESULT
            return result
        finally:
            self._in_flight.release()

    def scan(self, text: str, agent_id: Optional[str] = None) -> Optional[VerificationResult]:
        """Run one full cycle for already-decoded text."""
        if not self.start_scan():
            return None
        return self.on_scan_success(text, agent_id)

    def _decode_and_verify(self, text: str, agent_id: Optional[str], online: bool) -> VerificationResult:
        mode = VerificationMode.ONLINE if online else VerificationMode.OFFLINE
        parsed = self.verifier.parse_scan(text, self.transport, mode)
        if isinstance(parsed, VerificationResult):
            self.verifier.record_scan(parsed, agent_id)
            return parsed

        with self._state_lock:
            self._state = ScanState.VERIFYING
        return self._verify(parsed, agent_id, online)

    def _online_available(self) -> bool:
        if self.online_source is None:
            return False
        if self.connectivity is None:
            return True
        try:
            return bool(self.connectivity())
        except Exception:
            logger.warning("Connectivity probe failed; assuming offline", exc_info=True)
            return False

    def _connectivity_failure(self, mode: VerificationMode, agent_id: Optional[str]) -> VerificationResult:
        result = self.verifier.invalid(FailureReason.CONNECTIVITY, mode)
        self.verifier.record_scan(result, agent_id)
        return result

    def _verify(self, credential: SignedCredential, agent_id: Optional[str], online: bool) -> VerificationResult:
        if online:
            source = _CachingSource(self.online_source, self.cache)
            try:
                return self.verifier.verify(credential, source, VerificationMode.ONLINE, agent_id)
            except InfrastructureFailure as e:
                logger.warning("Online verification unavailable, retrying offline: %s", e.message)

        try:
            return self.verifier.verify(credential, self.cache, VerificationMode.OFFLINE, agent_id)
        except (InfrastructureFailure, DatabaseError) as e:
            logger.error("Offline verification failed: %s", e.message)
            return self._connectivity_failure(VerificationMode.OFFLINE, agent_id)
