"""Smart City attendance - FastAPI entrypoint."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import ServerSelectionTimeoutError

from smartcity.config import settings
from smartcity.db import db_shutdown, init_db
from smartcity.services.aggregator import Aggregator
from smartcity.services.feed_client import create_feed_client
from smartcity.api import attendance

logging.basicConfig(
    level=settings.effective_log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await init_db()
    except ServerSelectionTimeoutError as e:
        logger.error(
            "MongoDB is not running. Start it with: docker compose up -d (from project root)"
        )
        raise RuntimeError(
            "MongoDB connection failed. Start MongoDB (e.g. docker compose up -d)."
        ) from e

    aggregator = Aggregator()
    feed = create_feed_client(aggregator)
    app.state.day_store = aggregator.store
    app.state.feed_client = feed
    if settings.feed_enabled:
        feed.connect()
    else:
        logger.warning("FEED_ENABLED is false; attendance ingestion is off.")
    yield
    await feed.disconnect()
    await db_shutdown()


app = FastAPI(
    title=settings.app_name,
    description="Real-time school attendance ingestion: partner feed, merged day documents, live and archive reads",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": errors},
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(attendance.router, prefix="/api/attendance", tags=["Attendance"])


@app.get("/health")
def health():
    return {"status": "ok", "app": settings.app_name}
