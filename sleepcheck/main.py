"""FastAPI app: lifespan, CORS, router registration."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
from .api.sleep import router as sleep_router
from .api.alerts import router as alerts_router, device_router, push_router
from .services.alert_dispatcher import get_audio_resource
from .services.event_store import SLEEP_LOG_SCHEMA, SqlEventLogStore, set_event_store
from .services.monitor import get_monitor_registry
from .services.scheduler import start_scheduler, stop_scheduler
from .core.database import get_database
from .core.settings import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


# Used by: FastAPI lifespan, pick the sleep log store, start the countdown ticker, tear down on shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    db = get_database()
    if settings.DATABASE_URL:
        await db.connect(settings.DATABASE_URL, schema=SLEEP_LOG_SCHEMA)
        set_event_store(SqlEventLogStore(db))
    else:
        logger.warning("DB_CONNECTION_STRING not set, sleep logs are kept in memory only")
    await start_scheduler()

    yield

    await stop_scheduler()
    await get_monitor_registry().shutdown()
    get_audio_resource().teardown()
    await db.disconnect()


app = FastAPI(
    title="SleepCheck API",
    version="1.0.0",
    description="Infant sleep check compliance for licensed daycare",
    lifespan=lifespan
)

cors_origins = settings.CORS_ORIGINS.copy()
if settings.CORS_EXTRA_ORIGINS:
    cors_origins.extend([o.strip() for o in settings.CORS_EXTRA_ORIGINS.split(",") if o.strip()])

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sleep_router)
app.include_router(alerts_router)
app.include_router(device_router)
app.include_router(push_router)
