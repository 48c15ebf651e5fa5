# app/x402/client.py
"""
Paying HTTP client for x402-protected endpoints.

X402Client wraps requests: it performs the call, and when the server answers
402 with an X-Payment-Required header it signs a payment for those terms and
retries once with X-Payment. It refuses to pay for terms that are expired,
on another network, or above a configured ceiling.
"""
import logging
import time
from typing import Callable, Optional

import requests
from eth_account import Account

from app.x402.encoding import (
    X_PAYMENT_HEADER,
    X_PAYMENT_REQUIRED_HEADER,
    X_PAYMENT_RESPONSE_HEADER,
    decode_payment_receipt,
    decode_payment_requirement,
    encode_header,
)
from app.x402.errors import InvalidFieldsError, MalformedPayloadError
from app.x402.models import PaymentPayload, PaymentReceipt, PaymentRequirement
from app.x402.signing import create_signed_payment_payload

logger = logging.getLogger(__name__)


class PaymentRefusedError(Exception):
    """The client declined to pay for the terms it was offered."""


def is_payment_required(response: requests.Response) -> bool:
    """Check if a response is a 402 carrying payment terms."""
    return response.status_code == 402 and X_PAYMENT_REQUIRED_HEADER in response.headers


class X402Client:
    """
    HTTP client that pays x402 requirements with an EVM key.

    Args:
        private_key: Hex private key of the paying account
        network: Network this client is willing to pay on (e.g. "eip155:8453")
        max_amount: Optional ceiling in smallest units per request
        session: Optional requests.Session to reuse
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        private_key: str,
        network: str,
        max_amount: Optional[int] = None,
        session: Optional[requests.Session] = None,
        timeout: int = 30,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._private_key = private_key
        self._account = Account.from_key(private_key)
        self._network = network
        self._max_amount = max_amount
        self._session = session or requests.Session()
        self._timeout = timeout
        self._clock = clock or time.time

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def network(self) -> str:
        return self._network

    def decode_payment_requirement(self, header_value: str) -> PaymentRequirement:
        """
        Decode an X-Payment-Required header.

        Raises:
            MalformedPayloadError: If the header is not a valid requirement
        """
        try:
            return decode_payment_requirement(header_value)
        except InvalidFieldsError as e:
            raise MalformedPayloadError("Invalid payment requirement", detail=e.detail)
        except MalformedPayloadError as e:
            raise MalformedPayloadError("Failed to decode payment requirement", detail=e.detail)

    def create_payment_payload(self, requirement: PaymentRequirement) -> PaymentPayload:
        """
        Sign a payment for a requirement after checking it is acceptable.

        Raises:
            PaymentRefusedError: If the terms are expired, on another network,
                or above max_amount
        """
        now = self._clock()
        if requirement.network != self._network:
            raise PaymentRefusedError(
                f"Requirement is for network {requirement.network}, client pays on {self._network}"
            )
        if requirement.valid_until < now:
            raise PaymentRefusedError("Payment requirement has expired")
        if self._max_amount is not None and requirement.amount > self._max_amount:
            raise PaymentRefusedError(
                f"Required amount {requirement.max_amount_required} exceeds limit {self._max_amount}"
            )

        return create_signed_payment_payload(requirement, self._private_key, clock=self._clock)

    def request(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Perform a request, paying once if the server demands it.

        Returns:
            The final response (the paid retry if a payment was made)
        """
        kwargs.setdefault("timeout", self._timeout)
        response = self._session.request(method, url, **kwargs)
        if not is_payment_required(response):
            return response

        requirement = self.decode_payment_requirement(response.headers[X_PAYMENT_REQUIRED_HEADER])
        payload = self.create_payment_payload(requirement)
        logger.info(
            f"Paying {requirement.max_amount_required} units on {requirement.network} "
            f"to {requirement.pay_to} for {method} {url}"
        )

        headers = dict(kwargs.pop("headers", None) or {})
        headers[X_PAYMENT_HEADER] = encode_header(payload)
        return self._session.request(method, url, headers=headers, **kwargs)

    def get(self, url: str, **kwargs) -> requests.Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> requests.Response:
        return self.request("POST", url, **kwargs)

    @staticmethod
    def get_receipt(response: requests.Response) -> Optional[PaymentReceipt]:
        """Decode the X-Payment-Response header of a paid response, if present."""
        header = response.headers.get(X_PAYMENT_RESPONSE_HEADER)
        if not header:
            return None
        return decode_payment_receipt(header)
