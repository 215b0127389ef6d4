from httpx import AsyncClient, AsyncBaseTransport
from redis.asyncio import Redis
from structlog import get_logger
from typing import Optional
import json

from app.config import settings

logger = get_logger()

CACHE_KEY = "cached_health_status"

# Service key -> settings attribute holding its base URL
SERVICES = {
    "listing_api": "LISTING_API_URL",
    "object_storage": "SUPABASE_URL",
    "user_management": "USER_MANAGEMENT_URL",
}

redis_client: Redis | None = None

async def get_redis_client():
    global redis_client
    if redis_client is None:
        redis_client = Redis.from_url(settings.REDIS_URL)
    return redis_client

async def close_redis_client():
    global redis_client
    if redis_client is not None:
        await redis_client.close()
        redis_client = None

def _payload(resp) -> dict:
    try:
        return resp.json()
    except Exception:
        if 200 <= resp.status_code < 400:
            return {"status": "reachable"}
        # Concise message instead of a whole HTML error page
        snippet = (resp.text or "").strip()
        if snippet and len(snippet) > 200:
            snippet = snippet[:200] + "..."
        return {"message": snippet or "error"}

async def _probe(client: AsyncClient, base: str, verbose: bool) -> dict:
    base = base.rstrip("/")
    if base.endswith("/docs"):
        base = base[: -len("/docs")]
    tried = [f"{base}/health"]
    resp = await client.get(tried[-1])
    if resp.status_code >= 400 and base.endswith("/api/v1"):
        tried.append(f"{base[: -len('/api/v1')]}/health")
        resp = await client.get(tried[-1])
    # Storage gateways rarely expose /health; reachability of the base is enough
    if resp.status_code >= 400:
        tried.append(base)
        resp = await client.get(base)
    entry = {"status_code": resp.status_code, "data": _payload(resp)}
    if verbose:
        entry["tried"] = tried
    return entry

async def get_health(verbose: bool = False, *, transport: Optional[AsyncBaseTransport] = None):
    """Health of the upstream collaborators, served from Redis unless verbose."""
    redis = await get_redis_client()

    if not verbose:
        cached = await redis.get(CACHE_KEY)
        if cached:
            logger.info("Returning cached health status")
            return json.loads(cached)

    health = {}
    async with AsyncClient(timeout=10.0, transport=transport) as client:
        for service, attr in SERVICES.items():
            base = getattr(settings, attr, None)
            if not base:
                health[service] = {"status": "error", "error": f"Missing or empty settings.{attr}"}
                continue
            try:
                health[service] = await _probe(client, base, verbose)
            except Exception as e:
                health[service] = {"status": "error", "error": f"{type(e).__name__}: {e}"}

    ok_services = sum(
        1 for v in health.values()
        if isinstance(v.get("status_code"), int) and v["status_code"] < 400
    )
    error_services = len(SERVICES) - ok_services
    if error_services == 0:
        overall = "ok"
    elif ok_services > 0:
        overall = "degraded"
    else:
        overall = "down"
    health["overall_status"] = overall
    health["summary"] = {"ok": ok_services, "errors": error_services, "total": len(SERVICES)}

    await redis.setex(CACHE_KEY, settings.HEALTH_CACHE_SECONDS, json.dumps(health))
    return health
