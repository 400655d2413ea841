"""
Constants for evaluation and orchestration defaults.

These are the defaults used by settings.py when the corresponding
environment variable is not set.
"""

# Evaluator
EVALUATOR_MODEL_NAME = "openai:gpt-4o-mini"
EVALUATOR_TIMEOUT_SECONDS = 120.0

# Evaluation worker retry policy: two attempts, short jittered backoff.
EVALUATION_MAX_ATTEMPTS = 2
EVALUATION_RETRY_MIN_DELAY = 0.5  # seconds
EVALUATION_RETRY_MAX_DELAY = 5.0  # seconds
EVALUATION_RETRY_FACTOR = 1.5

# Repository snapshot fetch retry policy
FETCH_MAX_ATTEMPTS = 3
FETCH_RETRY_MIN_DELAY = 1.0
FETCH_RETRY_MAX_DELAY = 10.0
FETCH_RETRY_FACTOR = 2.0

# Fan-out
MAX_CONCURRENT_EVALUATIONS = 8

# Repository content fetcher caps
GITHUB_API_URL = "https://api.github.com"
GITHUB_RAW_URL = "https://raw.githubusercontent.com"
REPO_MAX_FILES = 60
REPO_MAX_FILE_BYTES = 60_000
REPO_MAX_TOTAL_BYTES = 400_000
REPO_FETCH_TIMEOUT_SECONDS = 30.0

# Range evaluation defaults
DEFAULT_RANGE_MIN = 0
DEFAULT_RANGE_MAX = 100

# Listing
DEFAULT_LIST_LIMIT = 20

# Environment variable names
ENV_DATABASE_URL = "DATABASE_URL"
ENV_EVALUATOR_MODEL = "EVALUATOR_MODEL"
ENV_EVALUATOR_TIMEOUT = "EVALUATOR_TIMEOUT_SECONDS"
ENV_EVALUATION_MAX_ATTEMPTS = "EVALUATION_MAX_ATTEMPTS"
ENV_EVALUATION_RETRY_MIN_DELAY = "EVALUATION_RETRY_MIN_DELAY"
ENV_EVALUATION_RETRY_MAX_DELAY = "EVALUATION_RETRY_MAX_DELAY"
ENV_EVALUATION_RETRY_FACTOR = "EVALUATION_RETRY_FACTOR"
ENV_MAX_CONCURRENT_EVALUATIONS = "MAX_CONCURRENT_EVALUATIONS"
ENV_GITHUB_TOKEN = "GITHUB_TOKEN"
ENV_GITHUB_API_URL = "GITHUB_API_URL"
ENV_GITHUB_RAW_URL = "GITHUB_RAW_URL"
ENV_REPO_MAX_FILES = "REPO_MAX_FILES"
ENV_REPO_MAX_FILE_BYTES = "REPO_MAX_FILE_BYTES"
ENV_REPO_MAX_TOTAL_BYTES = "REPO_MAX_TOTAL_BYTES"
ENV_AUTH_JWT_SECRET = "AUTH_JWT_SECRET"
