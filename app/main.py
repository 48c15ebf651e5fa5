# app/main.py
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.core.config import settings
from app.api.endpoints import tasks
from app.api.models.task import AgentCard
from app.x402 import __version__, audit
from app.x402.middleware import X402Middleware
from app.x402.models import PaymentConfig
from app.x402.nonces import NonceLedger
from app.x402.pricing import to_smallest_unit

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

payment_config = PaymentConfig.from_settings(settings)

# Shared between the middleware and the background sweeper
nonce_ledger = NonceLedger(
    retention_seconds=payment_config.nonce_retention,
    sweep_interval=settings.X402_NONCE_SWEEP_INTERVAL,
)


async def sweep_nonces(ledger: NonceLedger, interval: int) -> None:
    """Evict expired nonces every `interval` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        evicted = ledger.sweep()
        if evicted:
            logger.info(f"x402: Evicted {evicted} expired nonces ({len(ledger)} remaining)")
            audit.log_nonce_sweep(evicted=evicted, remaining=len(ledger))


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = asyncio.create_task(sweep_nonces(nonce_ledger, settings.X402_NONCE_SWEEP_INTERVAL))
    try:
        yield
    finally:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=__version__,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(X402Middleware, config=payment_config, ledger=nonce_ledger)

app.include_router(tasks.router, tags=["tasks"])


@app.get("/health", summary="Health Check", tags=["default"])
def health():
    """ Basic health check endpoint. Never requires payment. """
    return {"status": "ok", "message": f"Welcome to {settings.PROJECT_NAME}"}


@app.get("/.well-known/agent.json", response_model=AgentCard, tags=["default"])
def agent_card() -> AgentCard:
    """ Public service description with the payment terms. Never requires payment. """
    return AgentCard(
        name=settings.PROJECT_NAME,
        description=payment_config.description or "Pay-per-request task service",
        version=__version__,
        payment={
            "scheme": "exact",
            "network": payment_config.network,
            "resource": payment_config.token_address,
            "payTo": payment_config.pay_to,
            "maxAmountRequired": str(
                to_smallest_unit(payment_config.price, payment_config.token_decimals)
            ),
        },
    )
