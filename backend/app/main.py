# Load environment variables FIRST before any other imports
from dotenv import load_dotenv
load_dotenv()

import os
import logging
import sentry_sdk
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.database import engine, Base
from app.routers import comics
from app.utils.http_client import close_client

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize Sentry for error monitoring
sentry_dsn = os.getenv("SENTRY_DSN")
if sentry_dsn:
    sentry_sdk.init(
        dsn=sentry_dsn,
        traces_sample_rate=0.1,
        environment=os.getenv("ENVIRONMENT", "development"),
    )

# Create database tables
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - runs on startup and shutdown."""
    if not os.getenv("PROMPT_GENERATOR_URL") or not os.getenv("IMAGE_GENERATOR_URL"):
        logger.warning("PROMPT_GENERATOR_URL/IMAGE_GENERATOR_URL not set; using localhost defaults")

    yield

    logger.info("Shutting down...")
    await close_client()


app = FastAPI(
    title="Comic Strip Generator API",
    description="""
## Comic Strip Generator

Turn a one-line idea into a six-panel comic strip.

### Daily credits
Credits are derived from the comics you generated today (UTC):

| Comics today | Credits left |
|--------------|--------------|
| 0 | 18 |
| 1 | 12 |
| 2 | 6 |
| 3+ | 0 |
    """,
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware for the Next.js frontend
ALLOWED_ORIGINS = [
    "http://localhost:3000",  # Next.js dev server
    "http://localhost:3001",
]

extra_origins = os.getenv("CORS_ALLOWED_ORIGINS", "")
if extra_origins:
    ALLOWED_ORIGINS.extend([o.strip() for o in extra_origins.split(",") if o.strip()])

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With", "Accept"],
    expose_headers=["X-Sign-In-Url"],
)

app.include_router(comics.router)


@app.get("/")
def root():
    return {
        "message": "Comic Strip Generator API",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/health")
def health_check():
    return {"status": "healthy"}
