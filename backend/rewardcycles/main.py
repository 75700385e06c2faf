"""Reward Cycles - team award cycle API and scheduler."""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rewardcycles.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup: create tables and start the cycle scheduler
    from rewardcycles.database import Base, SessionLocal, engine
    from rewardcycles.services.cycle_scheduler import CycleScheduler

    # Import all models so they're registered with Base
    from rewardcycles import models  # noqa: F401

    Base.metadata.create_all(bind=engine)

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = CycleScheduler(SessionLocal, settings.cycle_evaluation_interval_minutes)
        scheduler.start()
    else:
        logger.info("Reward cycle scheduler disabled")
    app.state.cycle_scheduler = scheduler

    yield

    if scheduler:
        await scheduler.stop()


app = FastAPI(
    title=settings.app_name,
    description="Set, evaluate and publish team reward cycles",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    scheduler = getattr(app.state, "cycle_scheduler", None)
    return {
        "status": "healthy",
        "app": settings.app_name,
        "scheduler_running": bool(scheduler and scheduler.running),
    }


# Import and include routers
from rewardcycles.api import reward_cycles  # noqa: E402

app.include_router(reward_cycles.router, prefix="/api")
