# app/x402/pricing.py
"""
Payment requirement construction for x402 402 responses.

This module turns the configured human-unit price into the integer amount a
client has to sign for:
1. Parse the price as a Decimal (never a float)
2. Scale it by 10 ** token_decimals
3. Reject prices that cannot be represented exactly in the smallest unit
4. Stamp the requirement with validUntil = now + validity period

Configuration is loaded from app/core/config.py via PaymentConfig:
- X402_PRICE: Price in human units (e.g. "0.01" USDC)
- X402_TOKEN_DECIMALS: Decimal precision of the token (USDC = 6)
- X402_VALIDITY_PERIOD: Seconds a requirement stays valid
"""
import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional, Union

from app.x402.models import PaymentConfig, PaymentRequirement, SCHEME_EXACT

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def to_smallest_unit(price: Union[Decimal, str, int], decimals: int) -> int:
    """
    Convert a human-unit price to the token's smallest integer unit.

    Args:
        price: Price in human units. Floats are refused.
        decimals: Token decimal precision

    Returns:
        Integer amount in smallest units (e.g. "0.01" at 6 decimals -> 10000)

    Raises:
        ValueError: If the price is negative, not a number, a float, or has
            more fractional digits than the token supports
    """
    if isinstance(price, float):
        raise ValueError("Price must be a Decimal, str or int, not float")

    try:
        value = Decimal(price)
    except InvalidOperation:
        raise ValueError(f"Invalid price: {price!r}")

    if not value.is_finite() or value < 0:
        raise ValueError(f"Price must be a non-negative finite number, got {price!r}")

    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(
            f"Price {price} has more precision than {decimals} decimals allows"
        )

    return int(scaled)


class RequirementBuilder:
    """
    Builds PaymentRequirement objects from a fixed PaymentConfig.

    Stateless apart from the clock: every call produces a fresh, immutable
    requirement. The amount is computed once at construction, so a
    misconfigured price raises ValueError there.
    """

    def __init__(self, config: PaymentConfig, clock: Optional[Clock] = None):
        self._config = config
        self._clock = clock or time.time
        self._amount = to_smallest_unit(config.price, config.token_decimals)

    @property
    def amount(self) -> int:
        """Required amount in smallest units."""
        return self._amount

    def build(self, description: Optional[str] = None) -> PaymentRequirement:
        """
        Create a requirement valid from now until now + validity period.

        Args:
            description: Optional override of the configured description

        Returns:
            PaymentRequirement for a 402 response
        """
        now = int(self._clock())
        return PaymentRequirement(
            scheme=SCHEME_EXACT,
            network=self._config.network,
            max_amount_required=str(self._amount),
            resource=self._config.token_address,
            pay_to=self._config.pay_to,
            valid_until=now + self._config.validity_period,
            description=description or self._config.description,
        )


def create_payment_requirement(
    config: PaymentConfig,
    clock: Optional[Clock] = None,
) -> PaymentRequirement:
    """Build a single requirement without keeping a builder around."""
    return RequirementBuilder(config, clock=clock).build()
