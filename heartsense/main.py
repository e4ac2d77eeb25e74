import os, logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .database import init_db
from .background import drain
from .users import fastapi_users, auth_backend
from .schemas import UserCreate, UserRead, UserUpdate
from .routers import alerts, engagement, insights, preferences, vitals
from .services import notifications  # noqa: F401  registers the after-commit push fan-out
from .services.scheduler import start_scheduler, shutdown_scheduler
from .settings.config import settings

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = FastAPI(title="HeartSense Engagement")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Update for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------
# Route Includes
# ----------------------
app.include_router(engagement.router)
app.include_router(alerts.router)
app.include_router(preferences.router)
app.include_router(vitals.router)
app.include_router(insights.router)

# Authentication Routes
app.include_router(
    fastapi_users.get_auth_router(auth_backend),
    prefix="/auth/jwt",
    tags=["auth"]
)
app.include_router(
    fastapi_users.get_register_router(UserRead, UserCreate),
    prefix="/auth",
    tags=["auth"]
)
app.include_router(
    fastapi_users.get_users_router(UserRead, UserUpdate),
    prefix="/users",
    tags=["users"]
)


@app.get("/healthz")
async def healthz():
    return {"ok": True}


@app.on_event("startup")
async def on_startup():
    from . import models  # Required for SQLAlchemy model detection
    await init_db()
    if settings.SCHEDULER_ENABLED:
        start_scheduler()
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=0)")


@app.on_event("shutdown")
async def on_shutdown():
    shutdown_scheduler()
    # let in-flight pushes finish before the loop goes away
    await drain(timeout=10)
