# app/x402/validation.py
"""
Business-rule validation of x402 payments.

Checks run in a fixed order and the first failure is the only reason
reported:
1. Scheme
2. Network
3. Token/resource
4. Amount (paying more than required is accepted)
5. Timing (not expired, not beyond the clock-skew tolerance in the future)
6. Signature (recovered signer must equal the claimed payer)
7. Nonce (reserved last, so only a fully valid payment consumes it)
"""
import logging
import time
from typing import Callable, Optional

from app.x402.errors import (
    ExpiredPaymentError,
    InsufficientAmountError,
    NetworkMismatchError,
    NonceReusedError,
    PaymentValidationError,
    ResourceMismatchError,
    SchemeMismatchError,
)
from app.x402.models import PaymentConfig, PaymentPayload, PaymentRequirement, ValidationResult
from app.x402.nonces import NonceLedger
from app.x402.signing import SignatureVerifier

logger = logging.getLogger(__name__)


class PaymentValidator:
    """Validates payloads against requirements and consumes nonces on success."""

    def __init__(
        self,
        config: PaymentConfig,
        ledger: NonceLedger,
        verifier: Optional[SignatureVerifier] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._config = config
        self._ledger = ledger
        self._verifier = verifier or SignatureVerifier()
        self._clock = clock or time.time

    @property
    def ledger(self) -> NonceLedger:
        return self._ledger

    def validate(self, payload: PaymentPayload, requirement: PaymentRequirement) -> ValidationResult:
        """
        Run every rule against a payload.

        Returns:
            ValidationResult.accept(payload) if all rules pass, otherwise
            ValidationResult.reject() with the first failing rule
        """
        try:
            self._check_terms(payload, requirement)
            self._check_timing(payload, requirement)
            self._check_signature(payload)
            self._consume_nonce(payload)
        except PaymentValidationError as e:
            logger.info(
                f"Payment rejected ({e.code.value}) for payer {payload.payer}, "
                f"nonce {payload.nonce}: {e.detail or e.message}"
            )
            return ValidationResult.reject(e)

        return ValidationResult.accept(payload)

    def _check_terms(self, payload: PaymentPayload, requirement: PaymentRequirement) -> None:
        if payload.scheme != requirement.scheme:
            raise SchemeMismatchError(
                f"Payment scheme mismatch: expected {requirement.scheme}"
            )

        if payload.network != requirement.network:
            raise NetworkMismatchError(
                f"Network mismatch: expected {requirement.network}"
            )

        # Token addresses are hex; compare case-insensitively
        if payload.resource.lower() != requirement.resource.lower():
            raise ResourceMismatchError(
                f"Token contract mismatch: expected {requirement.resource}"
            )

        if payload.amount_units < requirement.amount:
            raise InsufficientAmountError(
                f"Insufficient payment: required {requirement.max_amount_required}, "
                f"got {payload.amount}"
            )

    def _check_timing(self, payload: PaymentPayload, requirement: PaymentRequirement) -> None:
        now = self._clock()

        if payload.timestamp < now - self._config.validity_period:
            raise ExpiredPaymentError(
                "Payment expired",
                detail=f"timestamp {payload.timestamp} older than {self._config.validity_period}s",
            )

        if payload.timestamp > now + self._config.clock_skew:
            raise ExpiredPaymentError(
                "Payment timestamp is too far in the future",
                detail=f"timestamp {payload.timestamp} ahead of server clock {int(now)}",
            )

        if now > requirement.valid_until:
            raise ExpiredPaymentError(
                "Payment requirement expired",
                detail=f"requirement valid until {requirement.valid_until}",
            )

    def _check_signature(self, payload: PaymentPayload) -> None:
        check = self._verifier.verify(payload)
        if not check.valid:
            raise check.error

    def _consume_nonce(self, payload: PaymentPayload) -> None:
        if not self._ledger.reserve(payload.nonce, timestamp=payload.timestamp):
            raise NonceReusedError("Nonce already used")
