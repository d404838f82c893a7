import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.context import build_context
from app.database import async_session
from app.errors import GatewayError, PaymentRejected, make_error_response
from app.routers import generate, health
from app.services.cleanup_worker import CleanupWorker

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger("media-gateway")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load routes and open shared clients on startup; stop the cleanup worker on shutdown.

    A bad endpoints config raises ConfigError here, so the server never starts serving.
    """
    context = build_context(settings, async_session)
    app.state.context = context

    logger.info("x402 media gateway starting")
    logger.info(f"  Token: {settings.PAYMENT_TOKEN_SYMBOL} ({settings.PAYMENT_TOKEN_ADDRESS})")
    logger.info(f"  Network: {settings.PAYMENT_NETWORK}")
    logger.info(f"  Wallet: {settings.WALLET_ADDRESS}")
    logger.info(f"  Facilitator: {settings.FACILITATOR_URL}")
    for route, qualities in context.registry.routes.items():
        for definition in qualities.values():
            logger.info(
                f"  {route} [{definition.quality}] -> {definition.model} "
                f"({definition.cost} {settings.PAYMENT_TOKEN_SYMBOL})"
            )
    if settings.X402_TEST_MODE:
        logger.warning("X402_TEST_MODE is on: payments are NOT verified")

    cleanup = CleanupWorker(
        async_session, context.object_store, interval=settings.CLEANUP_INTERVAL_SECONDS
    )
    cleanup.start()

    yield

    await cleanup.stop()
    await context.aclose()


app = FastAPI(
    title="x402 Media Gateway",
    description="Pay-per-request AI media generation over HTTP 402",
    version=health.VERSION,
    lifespan=lifespan,
)

# Catch-all generation router goes last
app.include_router(health.router, tags=["health"])
app.include_router(generate.router, tags=["generate"])


@app.exception_handler(PaymentRejected)
async def payment_rejected_handler(request: Request, exc: PaymentRejected):
    """402s carry the x402 payment requirements; a malformed header is a plain 400."""
    if exc.status_code == 402:
        return JSONResponse(status_code=402, content=exc.outcome.payment_required_body())
    return make_error_response(exc.status_code, exc.error_type, exc.message)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    """Pipeline and upstream failures with structured error bodies."""
    logger.error(f"{request.url.path}: {exc.error_type}: {exc.message}")
    return make_error_response(exc.status_code, exc.error_type, exc.message)
