"""
Paid generation routes.

One generic handler serves every route in the registry: it resolves the
route + quality to a RouteDefinition, runs the x402 payment gate, then the
generation pipeline. Mounted last so fixed routes (/, /health) win.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.context import AppContext, get_context
from app.database import get_db
from app.errors import make_error_response
from app.services.cache_store import CacheStore
from app.services.generation_pipeline import GenerationPipeline
from app.services.payment_gate import PAYMENT_HEADER

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/{route_path:path}")
async def handle_generate(
    route_path: str,
    request: Request,
    prompt: Optional[str] = None,
    quality: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    context: AppContext = Depends(get_context),
):
    """Generate (or fetch from cache) the media artifact for a paid route."""
    route = "/" + route_path.strip("/")

    try:
        definition = context.registry.resolve(route, quality)
    except KeyError:
        valid = context.registry.qualities(route)
        return make_error_response(
            400,
            "invalid_quality",
            f"Invalid quality '{quality}'. Valid options: {valid}",
        )

    if definition is None:
        return make_error_response(404, "not_found", f"No endpoint at {route}")

    payment = await context.payment_gate.require_payment(
        definition, request.headers.get(PAYMENT_HEADER)
    )

    pipeline = GenerationPipeline(
        context.settings,
        context.http_client,
        CacheStore(db),
        context.object_store,
    )
    result = await pipeline.generate(definition, prompt, payment=payment)

    return {
        "url": result.url,
        "prompt": result.effective_prompt,
        "cached": result.cached,
        "type": result.media_type,
        "quality": definition.quality,
    }
