"""Application settings and configuration"""

import os
import logging
from typing import List, Optional

from dotenv import load_dotenv

from codereview.infrastructure.constants.evaluation_constants import (
    EVALUATOR_MODEL_NAME,
    EVALUATOR_TIMEOUT_SECONDS,
    EVALUATION_MAX_ATTEMPTS,
    EVALUATION_RETRY_MIN_DELAY,
    EVALUATION_RETRY_MAX_DELAY,
    EVALUATION_RETRY_FACTOR,
    MAX_CONCURRENT_EVALUATIONS,
    GITHUB_API_URL,
    GITHUB_RAW_URL,
    REPO_MAX_FILES,
    REPO_MAX_FILE_BYTES,
    REPO_MAX_TOTAL_BYTES,
    ENV_DATABASE_URL,
    ENV_EVALUATOR_MODEL,
    ENV_EVALUATOR_TIMEOUT,
    ENV_EVALUATION_MAX_ATTEMPTS,
    ENV_EVALUATION_RETRY_MIN_DELAY,
    ENV_EVALUATION_RETRY_MAX_DELAY,
    ENV_EVALUATION_RETRY_FACTOR,
    ENV_MAX_CONCURRENT_EVALUATIONS,
    ENV_GITHUB_TOKEN,
    ENV_GITHUB_API_URL,
    ENV_GITHUB_RAW_URL,
    ENV_REPO_MAX_FILES,
    ENV_REPO_MAX_FILE_BYTES,
    ENV_REPO_MAX_TOTAL_BYTES,
    ENV_AUTH_JWT_SECRET,
)

# Values from a local .env file never override the real environment
load_dotenv(override=False)


class Settings:
    """Manages application settings and configuration"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

        # Environment
        self.environment = os.getenv("ENVIRONMENT", "development").lower()
        self.is_production = self.environment == "production"
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()

        # Database configuration
        self.database_url = os.getenv(ENV_DATABASE_URL, "sqlite:///./codereview.db")
        self.db_pool_size = int(os.getenv("DB_POOL_SIZE", "5"))
        self.db_max_overflow = int(os.getenv("DB_MAX_OVERFLOW", "10"))
        self.db_pool_timeout = int(os.getenv("DB_POOL_TIMEOUT", "30"))

        # Structured-output evaluator
        self.evaluator_model = os.getenv(ENV_EVALUATOR_MODEL, EVALUATOR_MODEL_NAME)
        self.evaluator_timeout = float(
            os.getenv(ENV_EVALUATOR_TIMEOUT, str(EVALUATOR_TIMEOUT_SECONDS))
        )

        # Evaluation worker retry policy
        self.evaluation_max_attempts = int(
            os.getenv(ENV_EVALUATION_MAX_ATTEMPTS, str(EVALUATION_MAX_ATTEMPTS))
        )
        self.evaluation_retry_min_delay = float(
            os.getenv(ENV_EVALUATION_RETRY_MIN_DELAY, str(EVALUATION_RETRY_MIN_DELAY))
        )
        self.evaluation_retry_max_delay = float(
            os.getenv(ENV_EVALUATION_RETRY_MAX_DELAY, str(EVALUATION_RETRY_MAX_DELAY))
        )
        self.evaluation_retry_factor = float(
            os.getenv(ENV_EVALUATION_RETRY_FACTOR, str(EVALUATION_RETRY_FACTOR))
        )

        # Fan-out concurrency bound
        self.max_concurrent_evaluations = int(
            os.getenv(ENV_MAX_CONCURRENT_EVALUATIONS, str(MAX_CONCURRENT_EVALUATIONS))
        )

        # Repository content fetcher
        self.github_token: Optional[str] = os.getenv(ENV_GITHUB_TOKEN) or None
        self.github_api_url = os.getenv(ENV_GITHUB_API_URL, GITHUB_API_URL).rstrip("/")
        self.github_raw_url = os.getenv(ENV_GITHUB_RAW_URL, GITHUB_RAW_URL).rstrip("/")
        self.repo_max_files = int(os.getenv(ENV_REPO_MAX_FILES, str(REPO_MAX_FILES)))
        self.repo_max_file_bytes = int(
            os.getenv(ENV_REPO_MAX_FILE_BYTES, str(REPO_MAX_FILE_BYTES))
        )
        self.repo_max_total_bytes = int(
            os.getenv(ENV_REPO_MAX_TOTAL_BYTES, str(REPO_MAX_TOTAL_BYTES))
        )

        # Authentication settings
        self.auth_jwt_secret: Optional[str] = os.getenv(ENV_AUTH_JWT_SECRET) or None

        # Rate limiting
        self.rate_limit_enabled = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"

        # CORS settings
        self.cors_origins: List[str] = os.getenv(
            "CORS_ORIGINS", "http://localhost:3000"
        ).split(",")

        # Set default log level for httpx and httpcore to reduce debug noise
        logging.getLogger("httpx").setLevel(logging.INFO)
        logging.getLogger("httpcore").setLevel(logging.INFO)

    def validate(self) -> bool:
        """
        Validate numeric settings.

        Raises:
            ValueError: If any value is out of range
        """
        if self.evaluation_max_attempts < 1:
            raise ValueError("EVALUATION_MAX_ATTEMPTS must be at least 1")
        if self.evaluation_retry_min_delay < 0 or self.evaluation_retry_max_delay < 0:
            raise ValueError("Retry delays must not be negative")
        if self.evaluation_retry_factor < 1:
            raise ValueError("EVALUATION_RETRY_FACTOR must be >= 1")
        if self.max_concurrent_evaluations < 1:
            raise ValueError("MAX_CONCURRENT_EVALUATIONS must be at least 1")
        if self.evaluator_timeout <= 0:
            raise ValueError("EVALUATOR_TIMEOUT_SECONDS must be positive")

        self.logger.info(
            f"Configuration validated: model={self.evaluator_model}, "
            f"attempts={self.evaluation_max_attempts}, "
            f"concurrency={self.max_concurrent_evaluations}"
        )
        return True


# Module-level singleton
settings = Settings()
