# app/x402/signing.py
"""
Payment signature verification.

A payment payload is signed over its canonical message: the compact JSON of
every field except the signature, in a fixed key order. Changing any signed
field changes the message, so a tampered payload either fails recovery or
recovers to an address other than the claimed payer.

Signer recovery sits behind SignerRecovery so the curve/message scheme can be
swapped without touching validation. The default implementation recovers an
Ethereum address from an EIP-191 personal-message signature (65 bytes r||s||v)
using eth-account.
"""
import json
import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from app.x402.errors import (
    InvalidSignatureError,
    PaymentValidationError,
    SignerMismatchError,
)
from app.x402.models import PaymentPayload, PaymentRequirement

logger = logging.getLogger(__name__)

# Order matters: this is the byte layout that gets signed
SIGNED_FIELDS = ("scheme", "network", "resource", "amount", "from", "timestamp", "nonce")

SIGNATURE_LENGTH = 65


def canonical_payment_message(payload: PaymentPayload) -> str:
    """
    Build the exact message a payer signs for a payload.

    Produces the same string a JavaScript client gets from
    ``JSON.stringify`` of the payload with ``signature`` removed.
    """
    wire = payload.model_dump(by_alias=True)
    ordered = {name: wire[name] for name in SIGNED_FIELDS}
    return json.dumps(ordered, separators=(",", ":"), ensure_ascii=False)


def parse_signature(signature: str) -> bytes:
    """
    Parse a 0x-prefixed hex signature into raw bytes.

    Raises:
        InvalidSignatureError: If the value is empty, not hex or the wrong length
    """
    if not signature:
        raise InvalidSignatureError("Missing payment signature")

    hex_part = signature[2:] if signature[:2].lower() == "0x" else signature
    try:
        raw = bytes.fromhex(hex_part)
    except ValueError:
        raise InvalidSignatureError(detail="signature is not valid hex")

    if len(raw) != SIGNATURE_LENGTH:
        raise InvalidSignatureError(detail=f"signature is {len(raw)} bytes, expected {SIGNATURE_LENGTH}")

    return raw


class SignerRecovery(ABC):
    """Recovers the identity that produced a signature over a message."""

    @abstractmethod
    def recover(self, message: str, signature: bytes) -> str:
        """
        Return the signer identity.

        Raises:
            InvalidSignatureError: If no identity can be recovered
        """

    def same_identity(self, recovered: str, claimed: str) -> bool:
        return recovered == claimed


class EIP191SignerRecovery(SignerRecovery):
    """secp256k1 recovery of an Ethereum address from a personal_sign signature."""

    def recover(self, message: str, signature: bytes) -> str:
        signable = encode_defunct(text=message)
        try:
            return Account.recover_message(signable, signature=signature)
        except Exception as e:
            raise InvalidSignatureError(detail=f"signer recovery failed: {e}")

    def same_identity(self, recovered: str, claimed: str) -> bool:
        # Checksummed and lowercase hex forms name the same account
        return recovered.lower() == claimed.lower()


@dataclass(frozen=True)
class SignatureCheck:
    """Result of verifying a payload signature."""
    valid: bool
    signer: Optional[str] = None
    error: Optional[PaymentValidationError] = None

    @property
    def reason(self) -> Optional[str]:
        return self.error.message if self.error else None


class SignatureVerifier:
    """Checks that a payload was signed by the payer it names."""

    def __init__(self, recovery: Optional[SignerRecovery] = None):
        self._recovery = recovery or EIP191SignerRecovery()

    def verify(self, payload: PaymentPayload) -> SignatureCheck:
        """
        Verify a payload signature.

        Returns:
            SignatureCheck carrying the recovered signer when valid, or the
            InvalidSignatureError / SignerMismatchError that explains why not
        """
        try:
            raw = parse_signature(payload.signature)
            signer = self._recovery.recover(canonical_payment_message(payload), raw)
        except InvalidSignatureError as e:
            logger.debug(f"Signature rejected for nonce {payload.nonce}: {e.detail or e.message}")
            return SignatureCheck(valid=False, error=e)

        if not self._recovery.same_identity(signer, payload.payer):
            logger.debug(f"Signer {signer} does not match claimed payer {payload.payer}")
            return SignatureCheck(
                valid=False,
                signer=signer,
                error=SignerMismatchError(),
            )

        return SignatureCheck(valid=True, signer=signer)


def verify_payment_signature(payload: PaymentPayload) -> SignatureCheck:
    """Verify a payload with the default EIP-191 recovery."""
    return SignatureVerifier().verify(payload)


def generate_nonce() -> str:
    """Cryptographically random 32-byte nonce as 0x-prefixed hex."""
    return "0x" + secrets.token_hex(32)


def sign_payment_payload(payload: PaymentPayload, private_key: str) -> PaymentPayload:
    """
    Sign a payload with a private key.

    The payload's ``from`` is replaced by the key's address so the result
    always verifies.
    """
    account = Account.from_key(private_key)
    unsigned = payload.model_copy(update={"payer": account.address, "signature": ""})
    signed = account.sign_message(encode_defunct(text=canonical_payment_message(unsigned)))
    return unsigned.model_copy(update={"signature": "0x" + bytes(signed.signature).hex()})


def create_signed_payment_payload(
    requirement: PaymentRequirement,
    private_key: str,
    amount: Optional[int] = None,
    nonce: Optional[str] = None,
    clock: Optional[Callable[[], float]] = None,
) -> PaymentPayload:
    """
    Create and sign a payload that satisfies a requirement.

    Args:
        requirement: Terms received in a 402 response
        private_key: Payer's hex private key
        amount: Amount to offer; defaults to the required amount
        nonce: Nonce to use; defaults to a fresh random one
        clock: Time source for the payload timestamp
    """
    now = int((clock or time.time)())
    payload = PaymentPayload(
        scheme=requirement.scheme,
        network=requirement.network,
        resource=requirement.resource,
        amount=str(amount if amount is not None else requirement.amount),
        payer=Account.from_key(private_key).address,
        timestamp=now,
        nonce=nonce or generate_nonce(),
    )
    return sign_payment_payload(payload, private_key)
