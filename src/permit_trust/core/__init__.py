# SPDX-License-Identifier: MPL-2.0
"""Core functionality for Permit Trust."""
from permit_trust.core.cache import PendingScanLogQueue, VerificationCache
from permit_trust.core.crypto import SigningKeyPair, VerificationKey
from permit_trust.core.db import RecordStore
from permit_trust.core.orchestrator import ScanState, VerificationOrchestrator
from permit_trust.core.payload import decode, encode
from permit_trust.core.signer import Signer
from permit_trust.core.transport import OpticalTransport
from permit_trust.core.verification import Verifier

__all__ = [
    "encode",
    "decode",
    "SigningKeyPair",
    "VerificationKey",
    "Signer",
    "Verifier",
    "VerificationCache",
    "PendingScanLogQueue",
    "RecordStore",
    "OpticalTransport",
    "VerificationOrchestrator",
    "ScanState",
]
