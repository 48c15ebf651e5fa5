# tests/test_x402_signing.py
"""
Unit tests for x402 payment signature verification.
"""
import json

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from app.x402.errors import InvalidSignatureError, PaymentErrorCode
from app.x402.models import PaymentPayload
from app.x402.signing import (
    SignatureVerifier,
    SignerRecovery,
    canonical_payment_message,
    create_signed_payment_payload,
    generate_nonce,
    parse_signature,
    sign_payment_payload,
    verify_payment_signature,
)
from app.x402.pricing import create_payment_requirement

from conftest import (
    FakeClock,
    NETWORK,
    NOW,
    OTHER_KEY,
    PAYER_ADDRESS,
    PAYER_KEY,
    USDC_BASE,
    make_config,
)


def _unsigned_payload(**overrides) -> PaymentPayload:
    values = dict(
        scheme="exact",
        network=NETWORK,
        resource=USDC_BASE,
        amount="10000",
        payer=PAYER_ADDRESS,
        timestamp=NOW,
        nonce="nonce-1",
    )
    values.update(overrides)
    return PaymentPayload(**values)


def _sign_raw(payload: PaymentPayload, private_key: str) -> PaymentPayload:
    """Sign without touching `from`, the way a forger would."""
    signed = Account.from_key(private_key).sign_message(
        encode_defunct(text=canonical_payment_message(payload))
    )
    return payload.model_copy(update={"signature": "0x" + bytes(signed.signature).hex()})


class TestCanonicalMessage:
    """Test the signed message layout."""

    def test_matches_json_stringify_layout(self):
        """Message is compact JSON in fixed order without the signature."""
        payload = _unsigned_payload(signature="0xdeadbeef")
        expected = (
            '{"scheme":"exact","network":"eip155:8453",'
            f'"resource":"{USDC_BASE}","amount":"10000",'
            f'"from":"{PAYER_ADDRESS}","timestamp":{NOW},"nonce":"nonce-1"}}'
        )
        assert canonical_payment_message(payload) == expected

    def test_signature_excluded(self):
        """Changing only the signature does not change the message."""
        a = _unsigned_payload(signature="0x01")
        b = _unsigned_payload(signature="0x02")
        assert canonical_payment_message(a) == canonical_payment_message(b)

    @pytest.mark.parametrize("field,value", [
        ("scheme", "streaming"),
        ("network", "eip155:1"),
        ("resource", "0x0000000000000000000000000000000000000000"),
        ("amount", "10001"),
        ("payer", "0x0000000000000000000000000000000000000001"),
        ("timestamp", NOW + 1),
        ("nonce", "nonce-2"),
    ])
    def test_every_field_is_covered(self, field, value):
        """Any signed field change alters the message."""
        original = _unsigned_payload()
        changed = original.model_copy(update={field: value})
        assert canonical_payment_message(original) != canonical_payment_message(changed)

    def test_parses_back_to_fields(self):
        """The message is valid JSON carrying the payload fields."""
        message = json.loads(canonical_payment_message(_unsigned_payload()))
        assert list(message) == ["scheme", "network", "resource", "amount", "from", "timestamp", "nonce"]


class TestParseSignature:
    """Test signature byte parsing."""

    def test_empty(self):
        with pytest.raises(InvalidSignatureError, match="signature"):
            parse_signature("")

    def test_not_hex(self):
        with pytest.raises(InvalidSignatureError):
            parse_signature("0xnothex")

    def test_wrong_length(self):
        with pytest.raises(InvalidSignatureError):
            parse_signature("0x" + "ab" * 64)

    def test_prefix_optional(self):
        assert len(parse_signature("ab" * 65)) == 65
        assert len(parse_signature("0x" + "ab" * 65)) == 65


class TestSignatureVerifier:
    """Test signer recovery and comparison."""

    def test_valid_signature(self):
        """A payload signed by its payer verifies."""
        payload = sign_payment_payload(_unsigned_payload(), PAYER_KEY)
        check = verify_payment_signature(payload)

        assert check.valid is True
        assert check.signer == PAYER_ADDRESS
        assert check.error is None

    def test_lowercase_payer_accepted(self):
        """Address comparison ignores checksum casing."""
        payload = _sign_raw(_unsigned_payload(payer=PAYER_ADDRESS.lower()), PAYER_KEY)
        assert verify_payment_signature(payload).valid is True

    def test_random_bytes_rejected(self):
        """Bytes that recover no identity are an invalid signature."""
        payload = _unsigned_payload(signature="0x" + "ff" * 65)
        check = verify_payment_signature(payload)

        assert check.valid is False
        assert check.error.code == PaymentErrorCode.INVALID_SIGNATURE
        assert "signature" in check.reason.lower()

    def test_missing_signature_rejected(self):
        check = verify_payment_signature(_unsigned_payload())
        assert check.valid is False
        assert check.error.code == PaymentErrorCode.INVALID_SIGNATURE

    def test_signer_mismatch(self):
        """Key A signing a payload that claims payer B is a signer mismatch."""
        payload = _sign_raw(
            _unsigned_payload(payer="0x0000000000000000000000000000000000000001"),
            OTHER_KEY,
        )
        check = verify_payment_signature(payload)

        assert check.valid is False
        assert check.error.code == PaymentErrorCode.SIGNER_MISMATCH
        assert check.reason == "Signer address mismatch"

    def test_tampered_amount(self):
        """Editing the amount after signing breaks the signature."""
        payload = sign_payment_payload(_unsigned_payload(amount="10000"), PAYER_KEY)
        tampered = payload.model_copy(update={"amount": "1"})

        check = verify_payment_signature(tampered)
        assert check.valid is False
        assert check.error.code in (PaymentErrorCode.SIGNER_MISMATCH, PaymentErrorCode.INVALID_SIGNATURE)

    def test_forged_payer(self):
        """Swapping `from` without re-signing is detected."""
        payload = sign_payment_payload(_unsigned_payload(), PAYER_KEY)
        forged = payload.model_copy(update={"payer": "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"})

        check = verify_payment_signature(forged)
        assert check.valid is False
        assert check.error.code == PaymentErrorCode.SIGNER_MISMATCH

    def test_custom_recovery_backend(self):
        """The verifier only depends on the SignerRecovery interface."""

        class StaticRecovery(SignerRecovery):
            def recover(self, message, signature):
                return "alice"

        verifier = SignatureVerifier(recovery=StaticRecovery())
        payload = _unsigned_payload(payer="alice", signature="0x" + "00" * 65)
        assert verifier.verify(payload).valid is True
        assert verifier.verify(payload.model_copy(update={"payer": "bob"})).valid is False


class TestSigningHelpers:
    """Test client-side signing helpers."""

    def test_sign_sets_payer_to_key_address(self):
        payload = sign_payment_payload(_unsigned_payload(payer="0xwhatever"), PAYER_KEY)
        assert payload.payer == PAYER_ADDRESS
        assert payload.signature.startswith("0x")
        assert len(payload.signature) == 2 + 130

    def test_create_signed_payload_for_requirement(self):
        clock = FakeClock()
        requirement = create_payment_requirement(make_config(), clock=clock)
        payload = create_signed_payment_payload(requirement, PAYER_KEY, clock=clock)

        assert payload.amount == "10000"
        assert payload.network == NETWORK
        assert payload.resource == USDC_BASE
        assert payload.timestamp == NOW
        assert verify_payment_signature(payload).valid is True

    def test_overpay_amount(self):
        requirement = create_payment_requirement(make_config(), clock=FakeClock())
        payload = create_signed_payment_payload(requirement, PAYER_KEY, amount=20000, clock=FakeClock())
        assert payload.amount == "20000"

    def test_nonces_are_unique(self):
        assert generate_nonce() != generate_nonce()
        requirement = create_payment_requirement(make_config(), clock=FakeClock())
        p1 = create_signed_payment_payload(requirement, PAYER_KEY)
        p2 = create_signed_payment_payload(requirement, PAYER_KEY)
        assert p1.nonce != p2.nonce
