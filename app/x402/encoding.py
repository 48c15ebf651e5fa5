# app/x402/encoding.py
"""
Header encoding for x402 payment objects.

Requirements, payloads and receipts travel in HTTP headers as standard
base64 of their compact JSON wire form. Decoding fails closed: bad base64,
bad JSON, a non-object document or a missing/ill-typed field all raise
MalformedPayloadError, which callers keep distinct from validation failures.
"""
import base64
import binascii
import json
import logging
from typing import Type, TypeVar

from pydantic import BaseModel, ValidationError

from app.x402.errors import InvalidFieldsError, MalformedPayloadError
from app.x402.models import PaymentPayload, PaymentReceipt, PaymentRequirement

logger = logging.getLogger(__name__)

# Header names
X_PAYMENT_HEADER = "X-Payment"
X_PAYMENT_REQUIRED_HEADER = "X-Payment-Required"
X_PAYMENT_RESPONSE_HEADER = "X-Payment-Response"

ModelT = TypeVar("ModelT", bound=BaseModel)


def encode_header(model: BaseModel) -> str:
    """
    Encode a wire model for transport in a header.

    Args:
        model: PaymentRequirement, PaymentPayload or PaymentReceipt

    Returns:
        Base64-encoded compact JSON string
    """
    document = model.model_dump(by_alias=True, exclude_none=True)
    raw = json.dumps(document, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def _decode_document(header_value: str) -> dict:
    if not header_value or not header_value.strip():
        raise MalformedPayloadError(detail="empty header")

    try:
        raw = base64.b64decode(header_value.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedPayloadError(detail=f"invalid base64: {e}")

    try:
        document = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedPayloadError(detail=f"invalid JSON: {e}")

    if not isinstance(document, dict):
        raise MalformedPayloadError(detail="document is not a JSON object")

    return document


def decode_header(header_value: str, model: Type[ModelT]) -> ModelT:
    """
    Decode a header value into the given wire model.

    Raises:
        MalformedPayloadError: If the value cannot be decoded
        InvalidFieldsError: If it decodes but does not validate as the model
    """
    document = _decode_document(header_value)
    try:
        return model.model_validate(document)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise InvalidFieldsError(detail=f"invalid {model.__name__} fields: {fields}")


def decode_payment_payload(header_value: str) -> PaymentPayload:
    """Decode the X-Payment request header."""
    return decode_header(header_value, PaymentPayload)


def decode_payment_requirement(header_value: str) -> PaymentRequirement:
    """Decode the X-Payment-Required response header."""
    return decode_header(header_value, PaymentRequirement)


def decode_payment_receipt(header_value: str) -> PaymentReceipt:
    """Decode the X-Payment-Response response header."""
    return decode_header(header_value, PaymentReceipt)
