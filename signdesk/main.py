# signdesk/main.py

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from signdesk.core.config import settings
from signdesk.core.db import create_tables
from signdesk.utils.logger import setup_app_logging, get_logger
# Local application imports - Routes
from signdesk.envelopes.router import router as envelope_routes
from signdesk.signers.router import router as signing_routes
from signdesk.otp.router import router as otp_routes
from signdesk.notifications.router import router as notification_routes


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create the tables outside production; migrations own the schema there
    """
    if settings.environment.lower() != "production":
        await create_tables()
    yield


# Create the FastAPI app
signdesk_app = FastAPI(
    title=f"SignDesk - {settings.environment}",
    description="SignDesk signature request API",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Configure logging
if settings.environment.lower() != "production":
    setup_app_logging(
        signdesk_app,
        log_level="INFO",
        use_json=False,
        log_file="signdesk.log",
        app_name="SignDesk",
        environment=settings.environment,
    )
else:
    setup_app_logging(
        signdesk_app,
        log_level="INFO",
        use_json=True,
        log_file="/var/log/signdesk.log",
        app_name="SignDesk",
        environment="production",
    )
logger = get_logger(__name__)

# Add CORS middleware
signdesk_app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_cors_urls.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
signdesk_app.include_router(envelope_routes)
signdesk_app.include_router(signing_routes)
signdesk_app.include_router(otp_routes)
signdesk_app.include_router(notification_routes)


# Root API to check if the server is up
@signdesk_app.get("/", tags=["Base"])
async def health_check():
    """
    Root API to check if the server is up
    """
    logger.info("Calling root API for testing")
    return {"status": "ok"}
