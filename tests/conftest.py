# tests/conftest.py
"""
Shared fixtures for x402 tests.

Keys are the well-known local development accounts, so addresses are stable
across runs. Time is always injected through FakeClock.
"""
from decimal import Decimal

import pytest

from app.x402.models import PaymentConfig
from app.x402.nonces import NonceLedger

PAYER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
PAYER_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
OTHER_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
OTHER_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

PAY_TO = "0x1234567890123456789012345678901234567890"
USDC_BASE = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
NETWORK = "eip155:8453"
NOW = 1_700_000_000


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_config(**overrides) -> PaymentConfig:
    values = dict(
        pay_to=PAY_TO,
        token_address=USDC_BASE,
        price=Decimal("0.01"),
        network=NETWORK,
        token_decimals=6,
        validity_period=300,
        clock_skew=60,
        bypass_paths=("/health", "/.well-known/agent.json"),
    )
    values.update(overrides)
    return PaymentConfig(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def ledger(config, clock):
    return NonceLedger(retention_seconds=config.nonce_retention, clock=clock)
