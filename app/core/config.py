# app/core/config.py
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "x402 Payment Gateway"
    API_V1_STR: str = "/api/v1"

    # Payment gate
    X402_ENABLED: bool = True
    X402_PAY_TO_ADDRESS: str = "0x0000000000000000000000000000000000000000"
    X402_TOKEN_ADDRESS: str = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"  # USDC on Base
    X402_TOKEN_DECIMALS: int = 6
    X402_PRICE: Decimal = Decimal("0.01")  # human units, never float
    X402_NETWORK: str = "eip155:8453"
    X402_VALIDITY_PERIOD: int = 300
    X402_CLOCK_SKEW_SECONDS: int = 60
    X402_DESCRIPTION: Optional[str] = None

    # Comma-separated; entries ending in "/*" match by prefix
    X402_BYPASS_PATHS: str = "/health,/.well-known/agent.json"

    # Nonce ledger eviction
    X402_NONCE_SWEEP_INTERVAL: int = 60

    # Audit log (JSON lines)
    X402_AUDIT_ENABLED: bool = False
    X402_AUDIT_LOG_PATH: str = "logs/x402_audit.jsonl"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
