# app/x402/middleware.py
"""
FastAPI middleware for x402 payment verification.

This module provides HTTP middleware that:
1. Lets bypass paths (health checks, agent card) through untouched
2. Returns 402 Payment Required with the payment terms when X-Payment is absent
3. Returns 400 when X-Payment cannot be decoded
4. Validates the payment locally (terms, timing, signature, nonce)
5. Returns 402 with the specific reason when validation fails
6. Otherwise attaches the payment to request.state and adds X-Payment-Response

The gateway never moves funds. It only decides whether a signed payment
assertion is good enough to admit the request.
"""
import logging
import time
from typing import Callable, Iterable, Optional

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from app.core.config import settings
from app.x402 import audit
from app.x402.encoding import (
    X_PAYMENT_HEADER,
    X_PAYMENT_REQUIRED_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
    decode_payment_payload,
    encode_header,
)
from app.x402.errors import MalformedPayloadError, PaymentErrorCode
from app.x402.models import (
    PaymentConfig,
    PaymentPayload,
    PaymentReceipt,
    PaymentRequirement,
    ValidationResult,
)
from app.x402.nonces import NonceLedger
from app.x402.pricing import RequirementBuilder
from app.x402.signing import SignatureVerifier
from app.x402.validation import PaymentValidator

logger = logging.getLogger(__name__)

# request.state attribute carrying the accepted payment
PAYMENT_STATE_ATTR = "x402_payment"


def is_bypass_path(path: str, bypass_paths: Iterable[str]) -> bool:
    """
    Check if a request path is exempt from payment.

    Entries ending in "/*" match any path under that prefix; other entries
    match exactly. Trailing slashes are ignored on both sides.
    """
    normalized = path.rstrip("/") or "/"
    for entry in bypass_paths:
        if entry.endswith("/*"):
            prefix = entry[:-2].rstrip("/")
            if normalized == (prefix or "/") or normalized.startswith(prefix + "/"):
                return True
        elif normalized == (entry.rstrip("/") or "/"):
            return True
    return False


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def create_402_response(
    requirement: PaymentRequirement,
    message: str = "X-Payment header is required"
) -> JSONResponse:
    """
    Create an HTTP 402 Payment Required response.

    The requirement is sent twice: encoded in X-Payment-Required for
    clients that read headers, and as plain fields in the body.
    """
    return JSONResponse(
        status_code=402,
        content={
            "error": "Payment Required",
            "message": message,
            "paymentInfo": requirement.to_wire(),
        },
        headers={X_PAYMENT_REQUIRED_HEADER: encode_header(requirement)},
    )


def create_malformed_response() -> JSONResponse:
    """Create the 400 response for an undecodable X-Payment header."""
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid Payment",
            "code": PaymentErrorCode.MALFORMED_PAYLOAD.value,
            "message": MalformedPayloadError.default_message,
        },
    )


def create_rejected_response(result: ValidationResult) -> JSONResponse:
    """Create the 402 response for a payment that failed validation."""
    return JSONResponse(
        status_code=402,
        content={
            "error": "Payment Invalid",
            "code": result.error.value,
            "message": result.message,
        },
    )


def encode_payment_response(payment: PaymentPayload) -> str:
    """
    Encode an accepted payment for the X-Payment-Response header.

    Returns:
        Base64-encoded JSON receipt (success, network, payer)
    """
    receipt = PaymentReceipt(success=True, network=payment.network, payer=payment.payer)
    return encode_header(receipt)


def get_payment_context(request: Request) -> Optional[PaymentPayload]:
    """Return the payment accepted for this request, if any."""
    return getattr(request.state, PAYMENT_STATE_ATTR, None)


class X402Middleware(BaseHTTPMiddleware):
    """
    x402 payment gate for FastAPI.

    When X402_ENABLED=true, every request that is not on the bypass list must
    carry a valid X-Payment header. When X402_ENABLED=false, all requests
    pass through unchanged.

    Components are built lazily from settings unless injected, so tests (and
    hosts that share a NonceLedger with a background sweeper) can pass their
    own.
    """

    def __init__(
        self,
        app,
        config: Optional[PaymentConfig] = None,
        ledger: Optional[NonceLedger] = None,
        verifier: Optional[SignatureVerifier] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        super().__init__(app)
        self._config = config
        self._ledger = ledger
        self._verifier = verifier
        self._clock = clock or time.time
        self._builder: Optional[RequirementBuilder] = None
        self._validator: Optional[PaymentValidator] = None

    @property
    def config(self) -> PaymentConfig:
        """Lazy snapshot of payment settings."""
        if self._config is None:
            self._config = PaymentConfig.from_settings(settings)
        return self._config

    @property
    def ledger(self) -> NonceLedger:
        if self._ledger is None:
            self._ledger = NonceLedger(
                retention_seconds=self.config.nonce_retention,
                clock=self._clock,
                sweep_interval=settings.X402_NONCE_SWEEP_INTERVAL,
            )
        return self._ledger

    @property
    def builder(self) -> RequirementBuilder:
        if self._builder is None:
            self._builder = RequirementBuilder(self.config, clock=self._clock)
        return self._builder

    @property
    def validator(self) -> PaymentValidator:
        if self._validator is None:
            self._validator = PaymentValidator(
                self.config,
                self.ledger,
                verifier=self._verifier,
                clock=self._clock,
            )
        return self._validator

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        """
        Process the request through the payment gate.

        Flow:
        1. Pass through if x402 is disabled or the path is bypassed
        2. No X-Payment header -> 402 with requirement
        3. Undecodable header -> 400
        4. Validation failure -> 402 with reason
        5. Success -> downstream handler, plus X-Payment-Response
        """
        if not settings.X402_ENABLED:
            return await call_next(request)

        path = request.url.path
        if is_bypass_path(path, self.config.bypass_paths):
            return await call_next(request)

        client_ip = get_client_ip(request)
        requirement = self.builder.build()

        payment_header = request.headers.get(X_PAYMENT_HEADER)
        if not payment_header:
            logger.info(
                f"x402: No X-Payment header from {client_ip} for {request.method} {path}, "
                f"returning 402 for {requirement.max_amount_required} units"
            )
            audit.log_payment_required_sent(
                client_ip=client_ip,
                path=path,
                amount=requirement.max_amount_required,
                network=requirement.network,
                pay_to=requirement.pay_to,
                valid_until=requirement.valid_until,
            )
            return create_402_response(requirement)

        try:
            payload = decode_payment_payload(payment_header)
        except MalformedPayloadError as e:
            logger.warning(f"x402: Malformed X-Payment header from {client_ip}: {e.detail}")
            audit.log_payment_malformed(client_ip=client_ip, path=path)
            return create_malformed_response()

        # Signer recovery is CPU-bound; keep it off the event loop
        result = await run_in_threadpool(self.validator.validate, payload, requirement)

        if not result.accepted:
            logger.warning(
                f"x402: Payment from {payload.payer} rejected: {result.error.value} ({result.message})"
            )
            audit.log_payment_rejected(
                client_ip=client_ip,
                path=path,
                code=result.error.value,
                payer=payload.payer,
                nonce=payload.nonce,
            )
            return create_rejected_response(result)

        logger.info(f"x402: Payment accepted from {payload.payer} ({payload.amount} units)")
        audit.log_payment_accepted(
            client_ip=client_ip,
            path=path,
            payer=payload.payer,
            amount=payload.amount,
            network=payload.network,
            nonce=payload.nonce,
        )

        setattr(request.state, PAYMENT_STATE_ATTR, result.payment)
        response = await call_next(request)
        response.headers[X_PAYMENT_RESPONSE_HEADER] = encode_payment_response(result.payment)
        return response
