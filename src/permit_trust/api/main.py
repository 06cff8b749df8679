# SPDX-License-Identifier: MPL-2.0
"""FastAPI application for the Permit Trust issuing authority."""

import logging
import uuid
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from permit_trust import __version__
from permit_trust.api.models import (
    CredentialResponse,
    PermitCreateRequest,
    PermitResponse,
    PublicKeyResponse,
    ScanLogList,
    ScanLogModel,
    VerifyRequest,
    VerifyResponse,
)
from permit_trust.config import Settings, get_settings
from permit_trust.core.crypto import ALGORITHM, SigningKeyPair
from permit_trust.core.db import RecordStore
from permit_trust.core.exceptions import (
    CredentialError,
    EntryNotFoundError,
    InfrastructureFailure,
    PermitTrustError,
)
from permit_trust.core.models import VerificationMode, VerificationResult
from permit_trust.core.signer import Signer
from permit_trust.core.transport import OpticalTransport
from permit_trust.core.verification import Verifier
from permit_trust.logging_config import audit_log, set_request_id

logger = logging.getLogger(__name__)


def _error_status(exc: PermitTrustError) -> int:
    if isinstance(exc, EntryNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, CredentialError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, InfrastructureFailure):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(
    settings: Optional[Settings] = None,
    key_pair: Optional[SigningKeyPair] = None,
    store: Optional[RecordStore] = None,
) -> FastAPI:
    """Build the authority API.

    The signing key is resolved exactly once here and shared read-only by all
    requests.

    Args:
        settings: Configuration; read from the environment when omitted
        key_pair: Signing key; loaded or generated per ``settings`` when omitted
        store: Record store; opened at ``settings.store_path`` when omitted
    """
    settings = settings or get_settings()
    key_pair = key_pair or SigningKeyPair.load_or_generate(
        settings.signing_key_path, settings.private_key_pem
    )
    store = store or RecordStore(settings.store_path)
    transport = OpticalTransport(settings.uri_scheme)
    signer = Signer(key_pair)
    verifier = Verifier(key_pair.verification_key(), store, max_age_ms=settings.max_credential_age_ms)
    logger.info("Authority started with signing key %s", key_pair.kid)

    # Initialize rate limiter
    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])

    app = FastAPI(
        title="Permit Trust API",
        description="Signed permit credentials and field verification",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )
    app.state.settings = settings
    app.state.store = store
    app.state.key_pair = key_pair
    app.state.limiter = limiter

    def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
        audit_log.rate_limit_exceeded(get_remote_address(request), request.url.path)
        return _rate_limit_exceeded_handler(request, exc)

    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.exception_handler(PermitTrustError)
    async def handle_permit_trust_error(request: Request, exc: PermitTrustError) -> JSONResponse:
        code = _error_status(exc)
        if code >= 500:
            logger.error("Request %s failed: %s", request.url.path, exc.message)
        return JSONResponse(status_code=code, content={"message": exc.message, "details": exc.details})

    # Security headers middleware
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Add security and request-id headers to all responses."""
        request_id = set_request_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Content-Security-Policy"] = "default-src 'self'"
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        max_age=600,
    )
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_hosts)

    def require_record(record_id: str):
        record = store.fetch_record(record_id)
        if record is None:
            raise EntryNotFoundError(f"Permit {record_id} not found", {"record_id": record_id})
        return record

    @app.get("/health", tags=["Health"])
    @limiter.limit("500/minute")
    async def health_check(request: Request) -> dict:
        """Health check endpoint for monitoring and load balancers."""
        return {
            "status": "healthy",
            "service": "permit-trust-api",
            "version": __version__,
            "kid": key_pair.kid,
            "stats": store.get_stats(),
        }

    @app.get("/api/public-key", response_model=PublicKeyResponse, tags=["Keys"])
    @limiter.limit("200/minute")
    async def public_key(request: Request) -> PublicKeyResponse:
        """Public half of the signing key, for provisioning verifying devices."""
        return PublicKeyResponse(public_key=key_pair.public_key_pem(), algorithm=ALGORITHM, kid=key_pair.kid)

    @app.post(
        "/api/permits",
        response_model=PermitResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Permits"],
    )
    async def create_permit(request: Request, body: PermitCreateRequest) -> PermitResponse:
        record_id = body.record_id or str(uuid.uuid4())
        if store.fetch_record(record_id) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Permit {record_id} already exists")
        record = store.put_record(body.to_record(record_id))
        logger.info("Registered permit %s", record_id)
        return PermitResponse.from_record(record)

    @app.get("/api/permits", response_model=List[PermitResponse], tags=["Permits"])
    async def list_permits(request: Request) -> List[PermitResponse]:
        return [PermitResponse.from_record(record) for record in store.list_records()]

    @app.get("/api/permits/{record_id}", response_model=PermitResponse, tags=["Permits"])
    async def get_permit(request: Request, record_id: str) -> PermitResponse:
        return PermitResponse.from_record(require_record(record_id))

    @app.post(
        "/api/permits/{record_id}/credentials",
        response_model=CredentialResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Credentials"],
    )
    @limiter.limit("60/minute")
    async def issue_credential(request: Request, record_id: str) -> CredentialResponse:
        """Sign a fresh credential for the permit and make it the current card."""
        require_record(record_id)
        credential = signer.issue(record_id)
        card = store.attach_card(record_id, credential)
        audit_log.credential_issued(record_id, card.card_id, key_pair.kid)
        return CredentialResponse(
            payload_encoded=credential.payload_encoded,
            signature=credential.signature,
            uri=transport.to_uri(credential),
            card_id=card.card_id,
        )

    @app.get("/api/permits/{record_id}/qr.png", tags=["Credentials"])
    async def permit_qr(request: Request, record_id: str) -> Response:
        """The current card's verification URI rendered as a QR code."""
        record = require_record(record_id)
        if record.card is None:
            raise EntryNotFoundError(f"Permit {record_id} has no issued card", {"record_id": record_id})
        png = transport.render_png(transport.to_uri(record.card.credential))
        return Response(content=png, media_type="image/png")

    @app.post(
        "/api/scans/verify",
        response_model=VerifyResponse,
        response_model_exclude_none=True,
        tags=["Scans"],
    )
    @limiter.limit("300/minute")
    async def verify_scan(request: Request, body: VerifyRequest) -> VerifyResponse:
        """Verify scanned text against the authoritative store and log the scan."""
        parsed = verifier.parse_scan(body.qr_data, transport, VerificationMode.ONLINE)
        if isinstance(parsed, VerificationResult):
            verifier.record_scan(parsed, body.agent_id)
            result = parsed
        else:
            result = verifier.verify(parsed, store, VerificationMode.ONLINE, body.agent_id)
        return VerifyResponse.from_result(result)

    @app.post("/api/scans/logs", status_code=status.HTTP_201_CREATED, tags=["Scans"])
    async def append_scan_log(request: Request, body: ScanLogModel) -> dict:
        """Accept a scan log reported by a verifying device."""
        store.append_scan_log(body.to_entry())
        return {"status": "recorded"}

    @app.get("/api/scans/logs", response_model=ScanLogList, tags=["Scans"])
    async def list_scan_logs(
        request: Request,
        limit: int = Query(100, ge=1, le=1000),
        offset: int = Query(0, ge=0),
    ) -> ScanLogList:
        entries = store.list_scan_logs(limit=limit, offset=offset)
        return ScanLogList(logs=[ScanLogModel.from_entry(entry) for entry in entries])

    return app
