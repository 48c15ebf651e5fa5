# app/x402/errors.py
"""
Error taxonomy for the x402 payment gate.

Every rejection the gateway can produce maps to exactly one class here.
Each class carries a stable ``code`` (returned to clients so they can react
programmatically) and a short public ``message``. Internal detail such as
decoder exceptions or recovered addresses stays in server-side logs.
"""
from enum import Enum
from typing import Optional


class PaymentErrorCode(str, Enum):
    """Stable rejection codes exposed in 400/402 response bodies."""
    MALFORMED_PAYLOAD = "MalformedPayload"
    SCHEME_MISMATCH = "SchemeMismatch"
    NETWORK_MISMATCH = "NetworkMismatch"
    RESOURCE_MISMATCH = "ResourceMismatch"
    INSUFFICIENT_AMOUNT = "InsufficientAmount"
    EXPIRED = "Expired"
    INVALID_SIGNATURE = "InvalidSignature"
    SIGNER_MISMATCH = "SignerMismatch"
    NONCE_REUSED = "NonceReused"


class PaymentError(Exception):
    """Base class for all payment gate errors."""

    code: PaymentErrorCode
    default_message: str = "Payment error"

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        self.message = message or self.default_message
        # Server-side only, never serialized into a response
        self.detail = detail
        super().__init__(self.message)


class MalformedPayloadError(PaymentError):
    """The payment header could not be decoded into a payload."""
    code = PaymentErrorCode.MALFORMED_PAYLOAD
    default_message = "Malformed payment header"


class InvalidFieldsError(MalformedPayloadError):
    """The header decoded to a JSON object whose fields are missing or ill-typed."""


class PaymentValidationError(PaymentError):
    """A decoded payload failed one of the business rules."""


class SchemeMismatchError(PaymentValidationError):
    code = PaymentErrorCode.SCHEME_MISMATCH
    default_message = "Payment scheme mismatch"


class NetworkMismatchError(PaymentValidationError):
    code = PaymentErrorCode.NETWORK_MISMATCH
    default_message = "Network mismatch"


class ResourceMismatchError(PaymentValidationError):
    code = PaymentErrorCode.RESOURCE_MISMATCH
    default_message = "Token contract mismatch"


class InsufficientAmountError(PaymentValidationError):
    code = PaymentErrorCode.INSUFFICIENT_AMOUNT
    default_message = "Insufficient payment amount"


class ExpiredPaymentError(PaymentValidationError):
    code = PaymentErrorCode.EXPIRED
    default_message = "Payment expired"


class InvalidSignatureError(PaymentValidationError):
    code = PaymentErrorCode.INVALID_SIGNATURE
    default_message = "Invalid payment signature"


class SignerMismatchError(PaymentValidationError):
    code = PaymentErrorCode.SIGNER_MISMATCH
    default_message = "Signer address mismatch"


class NonceReusedError(PaymentValidationError):
    code = PaymentErrorCode.NONCE_REUSED
    default_message = "Nonce already used"
