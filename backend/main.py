import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load env from backend/.env
backend_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(backend_dir, ".env"))

# Import after dotenv is loaded
from backend.core.config import settings, validate_config  # noqa: E402
from backend.core.database import create_all_tables  # noqa: E402
from backend.core.errors import register_error_handlers  # noqa: E402
from backend.core.logging import configure_logging  # noqa: E402
from backend.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from backend.core.validation import validate_env  # noqa: E402
from backend.api import admin, analytics, audit, dashboard, health, plans, recommendations, subscriptions, users  # noqa: E402

configure_logging(settings.ENV, level=settings.LOG_LEVEL, fmt=settings.LOG_FORMAT)
validate_env()
validate_config(strict=settings.CONFIG_STRICT)

logger = logging.getLogger("subtrack")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting SubTrack backend...")
    app.state.startup_time = time.time()
    create_all_tables()
    try:
        yield
    finally:
        logger.info("Stopping SubTrack backend...")


app = FastAPI(title="SubTrack - Backend", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)

for module in (plans, subscriptions, recommendations, analytics, dashboard, users, admin, audit, health):
    app.include_router(module.router)
app.include_router(health.root_router)


@app.get("/")
def root():
    return {"name": "SubTrack", "status": "ok", "environment": settings.ENV}
