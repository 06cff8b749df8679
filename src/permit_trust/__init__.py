# SPDX-License-Identifier: MPL-2.0
"""
Permit Trust - Signed permit credentials with offline field verification.

This package issues Ed25519-signed credential references for permit records,
embeds them in QR codes, and verifies scanned codes online against the issuing
authority or offline against a device-local cache.
"""

import contextlib
from importlib.metadata import version

# Set up version
__version__ = "0.1.0"

with contextlib.suppress(Exception):
    __version__ = version("permit-trust")


# Core components
from permit_trust.core import (
    OpticalTransport,
    Signer,
    SigningKeyPair,
    VerificationCache,
    VerificationKey,
    VerificationOrchestrator,
    Verifier,
)

# Public API
__all__ = [
    "SigningKeyPair",
    "VerificationKey",
    "Signer",
    "Verifier",
    "VerificationCache",
    "OpticalTransport",
    "VerificationOrchestrator",
    "__version__",
]
