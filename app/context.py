"""
Application context - the shared handles every request and the cleanup worker use.

Built once in the app lifespan and stored on app.state.context. There are no
module-level client globals; components receive what they need from here.
"""
from dataclasses import dataclass

import httpx
from fastapi import Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.services.object_store import ObjectStore, create_s3_client
from app.services.payment_gate import PaymentGate
from app.services.route_registry import RouteRegistry


@dataclass
class AppContext:
    settings: object
    http_client: httpx.AsyncClient
    session_factory: async_sessionmaker
    object_store: ObjectStore
    registry: RouteRegistry

    @property
    def payment_gate(self) -> PaymentGate:
        return PaymentGate(self.settings, self.http_client)

    async def aclose(self) -> None:
        await self.http_client.aclose()


def build_context(settings, session_factory: async_sessionmaker) -> AppContext:
    """Load the route table and open shared clients.

    Raises:
        ConfigError: If the endpoints config is missing or invalid
    """
    registry = RouteRegistry.from_file(settings.ENDPOINTS_CONFIG, settings.PAYMENT_TOKEN_DECIMALS)
    http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, follow_redirects=True)
    object_store = ObjectStore(create_s3_client(settings), settings.S3_BUCKET, settings.S3_CDN_URL)
    return AppContext(
        settings=settings,
        http_client=http_client,
        session_factory=session_factory,
        object_store=object_store,
        registry=registry,
    )


def get_context(request: Request) -> AppContext:
    """FastAPI dependency returning the shared application context."""
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise RuntimeError("Application context not initialised. Server may still be starting.")
    return context
