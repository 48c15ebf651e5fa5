# app/x402/models.py
"""
Data model for the x402 payment gate.

Wire models are pydantic v2 models serialized with camelCase aliases
(``maxAmountRequired``, ``payTo``, ``validUntil``...). The payer field is
``from`` on the wire and ``payer`` in Python. All amounts are integer strings
in the token's smallest unit; nothing here is ever a float.
"""
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator
from pydantic.alias_generators import to_camel

from app.x402.errors import PaymentErrorCode, PaymentError

SCHEME_EXACT = "exact"

# Widest value a uint256 token amount can hold
MAX_AMOUNT_DIGITS = 78

_UINT_RE = re.compile(r"^[0-9]{1,%d}$" % MAX_AMOUNT_DIGITS)


def _check_uint_string(value: str) -> str:
    if not isinstance(value, str) or not _UINT_RE.match(value):
        raise ValueError(
            f"amount must be a non-negative integer string of at most {MAX_AMOUNT_DIGITS} digits"
        )
    return value


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        """Dump using wire (camelCase) field names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class PaymentRequirement(_WireModel):
    """Terms a client must satisfy before a protected request is admitted."""

    scheme: str = SCHEME_EXACT
    network: str
    max_amount_required: str
    resource: str
    pay_to: str
    valid_until: StrictInt
    description: Optional[str] = None

    @field_validator("max_amount_required")
    @classmethod
    def check_amount(cls, value):
        return _check_uint_string(value)

    @property
    def amount(self) -> int:
        return int(self.max_amount_required)


class PaymentPayload(_WireModel):
    """
    A signed payment assertion submitted by a client.

    The signature covers every other field (see
    ``app.x402.signing.canonical_payment_message``).
    """

    scheme: str
    network: str
    resource: str
    amount: str
    payer: str = Field(alias="from")
    timestamp: StrictInt
    nonce: str = Field(min_length=1)
    signature: str = ""

    @field_validator("amount")
    @classmethod
    def check_amount(cls, value):
        return _check_uint_string(value)

    @property
    def amount_units(self) -> int:
        return int(self.amount)


class PaymentReceipt(_WireModel):
    """Summary of an accepted payment returned in ``X-Payment-Response``."""

    success: bool
    network: str
    payer: str


@dataclass(frozen=True)
class ValidationResult:
    """
    Outcome of checking a payload against a requirement.

    Either ``accepted`` with the validated payload echoed back, or rejected
    with exactly one error code and its public message.
    """
    accepted: bool
    payment: Optional[PaymentPayload] = None
    error: Optional[PaymentErrorCode] = None
    message: Optional[str] = None

    @classmethod
    def accept(cls, payment: PaymentPayload) -> "ValidationResult":
        return cls(accepted=True, payment=payment)

    @classmethod
    def reject(cls, exc: PaymentError) -> "ValidationResult":
        return cls(accepted=False, error=exc.code, message=exc.message)


def parse_path_list(value: Optional[str]) -> Tuple[str, ...]:
    """Parse a comma-separated path list, dropping blanks."""
    if not value or not value.strip():
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class PaymentConfig:
    """
    Fixed gateway configuration.

    Snapshotted from settings once so the builder, validator and middleware
    all see the same terms for the lifetime of the process.
    """
    pay_to: str
    token_address: str
    price: Decimal
    network: str
    token_decimals: int = 6
    validity_period: int = 300
    clock_skew: int = 60
    description: Optional[str] = None
    bypass_paths: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        try:
            price = self.price if isinstance(self.price, Decimal) else Decimal(str(self.price))
        except InvalidOperation:
            raise ValueError(f"Invalid price: {self.price!r}")
        if not price.is_finite() or price < 0:
            raise ValueError(f"Price must be a non-negative finite number, got {self.price!r}")
        if self.token_decimals < 0:
            raise ValueError("token_decimals must be >= 0")
        scaled = price.scaleb(self.token_decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(
                f"Price {price} has more precision than {self.token_decimals} decimals allows"
            )
        if self.validity_period <= 0:
            raise ValueError("validity_period must be positive")
        if self.clock_skew < 0:
            raise ValueError("clock_skew must be >= 0")
        object.__setattr__(self, "price", price)
        object.__setattr__(self, "bypass_paths", tuple(self.bypass_paths))

    @property
    def nonce_retention(self) -> int:
        """Seconds a consumed nonce must be remembered."""
        return self.validity_period + self.clock_skew

    @classmethod
    def from_settings(cls, settings: Any) -> "PaymentConfig":
        return cls(
            pay_to=settings.X402_PAY_TO_ADDRESS,
            token_address=settings.X402_TOKEN_ADDRESS,
            price=settings.X402_PRICE,
            network=settings.X402_NETWORK,
            token_decimals=settings.X402_TOKEN_DECIMALS,
            validity_period=settings.X402_VALIDITY_PERIOD,
            clock_skew=settings.X402_CLOCK_SKEW_SECONDS,
            description=settings.X402_DESCRIPTION,
            bypass_paths=parse_path_list(settings.X402_BYPASS_PATHS),
        )
