"""
FastAPI application for rubric-driven repository analysis.

Authentication:
- All endpoints (except /health) require Bearer token authentication
- Outside production, ``dev_test_token_<user_id>`` tokens are accepted
- With AUTH_JWT_SECRET set, HS256 JWTs are validated and their ``sub`` is the user id
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from codereview import __version__
from codereview.api.routes.analysis import router as analysis_router
from codereview.database import check_connection, create_tables
from codereview.infrastructure.config.settings import settings
from codereview.schemas import HealthCheckResponse
from codereview.services.external.rate_limiter import configure_rate_limiter

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate()
    if check_connection():
        create_tables()
    else:
        logger.warning("Database is not reachable; tables were not created")
    yield


app = FastAPI(
    title="Code Review Analysis API",
    description="Evaluate repositories against rubrics with a language model.",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Configure rate limiting
configure_rate_limiter(app)

app.include_router(analysis_router)


@app.get(
    "/health",
    response_model=HealthCheckResponse,
    tags=["System"],
    summary="Health check",
    description="Simple health check endpoint to verify the API is running.",
)
async def health_check():
    """
    Simple health check endpoint.
    """
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}
