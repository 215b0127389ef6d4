from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from structlog import get_logger
from app.routers import drafts
from app.routers import health
from app.services.drafts import registry
from app.services.health import close_redis_client, get_health

logger = get_logger()

app = FastAPI(title="Hostel Listing Draft Service")
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"])

scheduler = AsyncIOScheduler()

async def update_health_cache():
    try:
        await get_health(verbose=True)
    except Exception as e:
        # Redis being down must not stop the scheduler
        logger.warning("Health cache refresh failed", error=str(e))

async def prune_drafts():
    registry.prune()

@app.on_event("startup")
async def startup_event():
    await update_health_cache()
    scheduler.add_job(update_health_cache, "interval", minutes=5)
    scheduler.add_job(prune_drafts, "interval", minutes=5)
    scheduler.start()

@app.on_event("shutdown")
async def shutdown_event():
    scheduler.shutdown()
    await close_redis_client()

app.include_router(drafts.router)
app.include_router(health.router)

@app.get("/health")
async def root_health():
    return "ok"
