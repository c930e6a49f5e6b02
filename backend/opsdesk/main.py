from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from opsdesk.api.deps import build_container
from opsdesk.api.health import router as health_router
from opsdesk.api.routes_guides import router as guides_router
from opsdesk.api.routes_refunds import router as refunds_router
from opsdesk.api.routes_webhook import router as webhook_router
from opsdesk.config import settings
from opsdesk.db import init_db
from opsdesk.utils.log import get_logger, setup_logging

log = get_logger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup
    setup_logging()
    if settings.SHEETS_BACKEND != "google":
        init_db()

    container = build_container(settings)
    app.state.container = container

    # the webhook dedup cache is dropped wholesale on a fixed interval
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        container.dedup.clear,
        "interval",
        seconds=settings.DEDUP_CLEAR_INTERVAL_SECONDS,
        id="clear_webhook_dedup_cache",
    )
    scheduler.start()
    log.info(f"started (sheets backend={settings.SHEETS_BACKEND})")

    try:
        yield
    finally:
        scheduler.shutdown(wait=False)
        await container.aclose()


app = FastAPI(title="Opsdesk - Refunds & Notifications", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router, prefix="/api", tags=["health"])

app.include_router(refunds_router)

app.include_router(webhook_router)

app.include_router(guides_router)
