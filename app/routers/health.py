from fastapi import APIRouter
from structlog import get_logger

from app.services.drafts import registry
from app.services.health import get_health

logger = get_logger()
router = APIRouter(prefix="/api/v1", tags=["health"])

@router.get("/health")
async def check_health(verbose: bool = False):
    """Upstream health. Use verbose=true to bypass the cache and include tried URLs."""
    health = await get_health(verbose=verbose)
    logger.info("Fetched health status", verbose=verbose)
    return {**health, "open_drafts": len(registry)}
