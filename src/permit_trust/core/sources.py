# SPDX-License-Identifier: MPL-2.0
"""Record sources and scan log sinks.

The verifier is polymorphic over where records come from: the authority's
store (online), an HTTP client for it, or the device cache (offline) all
implement :class:`RecordSource`.  Scan logs go to a :class:`ScanLogSink`.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import List, Optional, Protocol

from .exceptions import InfrastructureFailure, PermitTrustError
from .models import PermitRecord, ScanLogEntry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0


class RecordSource(Protocol):
    """Anything that can resolve a record id to a record."""

    def fetch_record(self, record_id: str) -> Optional[PermitRecord]:
        """Return the record, ``None`` if unknown.

        Raises:
            InfrastructureFailure: If the source cannot be reached.
        """
        ...


class ScanLogSink(Protocol):
    """Append-only destination for scan audit entries."""

    def append_scan_log(self, entry: ScanLogEntry) -> None:
        ...


class BoundedRecordSource:
    """Puts a hard timeout around a record source that may block.

    A lookup that does not finish within ``timeout`` seconds, or that fails
    with an unexpected error, is reported as :class:`InfrastructureFailure`.
    """

    def __init__(self, source: RecordSource, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.source = source
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="record-fetch")

    def fetch_record(self, record_id: str) -> Optional[PermitRecord]:
        future = self._executor.submit(self.source.fetch_record, record_id)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError as e:
            future.cancel()
            raise InfrastructureFailure(
                f"Record lookup timed out after {self.timeout:.1f}s",
                {"record_id": record_id},
            ) from e
        except PermitTrustError:
            raise
        except Exception as e:
            raise InfrastructureFailure(f"Record source unavailable: {e}", {"record_id": record_id}) from e

    def close(self) -> None:
        self._executor.shutdown(wait=False)


class FallbackScanLogSink:
    """Sends scan logs to the authority, queueing them locally when offline."""

    def __init__(self, primary: ScanLogSink, fallback: ScanLogSink) -> None:
        self.primary = primary
        self.fallback = fallback

    def append_scan_log(self, entry: ScanLogEntry) -> None:
        try:
            self.primary.append_scan_log(entry)
        except InfrastructureFailure as e:
            logger.info("Authority unreachable, queueing scan log locally: %s", e.message)
            self.fallback.append_scan_log(entry)


class MemoryScanLogSink:
    """Keeps scan logs in a list; used when no durable sink is configured."""

    def __init__(self) -> None:
        self.entries: List[ScanLogEntry] = []

    def append_scan_log(self, entry: ScanLogEntry) -> None:
        self.entries.append(entry)
