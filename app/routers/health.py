"""
Service info and health routes.
"""
from fastapi import APIRouter, Depends

from app.context import AppContext, get_context
from app.services.route_registry import default_variant

router = APIRouter()

SERVICE_NAME = "x402-media-gateway"
VERSION = "0.1.0"


@router.get("/")
async def service_info(context: AppContext = Depends(get_context)):
    """List paid endpoints with their qualities and prices."""
    settings = context.settings
    endpoints = []
    for route, qualities in context.registry.routes.items():
        endpoints.append({
            "path": route,
            "default_quality": default_variant(qualities).quality,
            "qualities": [
                {
                    "quality": d.quality,
                    "description": d.description,
                    "cost": f"{d.cost} {settings.PAYMENT_TOKEN_SYMBOL}",
                    "type": d.media_type,
                }
                for d in qualities.values()
            ],
        })

    return {
        "service": SERVICE_NAME,
        "version": VERSION,
        "endpoints": endpoints,
        "token": settings.PAYMENT_TOKEN_ADDRESS,
        "token_symbol": settings.PAYMENT_TOKEN_SYMBOL,
        "network": settings.PAYMENT_NETWORK,
    }


@router.get("/health")
async def health_check(context: AppContext = Depends(get_context)):
    """Liveness check."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "routes": len(context.registry),
    }
