"""Centralized constants"""

# Redis TTLs
REDIS_KEY_TTL_SECONDS = 30 * 24 * 60 * 60  # 30 days
ENROLLMENT_COUNTER_TTL_SECONDS = 2 * 24 * 60 * 60
RECORD_LOCK_TIMEOUT_SECONDS = 120

# Graph editing
MAX_HISTORY_SNAPSHOTS = 50
DUPLICATE_NODE_OFFSET = 50
EXPORT_FORMAT_VERSION = "1.0.0"
MAX_NODES_PER_WORKFLOW = 500

# Split branches
PERCENTAGE_TOLERANCE = 0.01
MIN_SPLIT_BRANCHES = 2

# Execution
MAX_STEPS_PER_RUN = 100
CONDITION_HANDLES = ("true", "false")
WAIT_TIMEOUT_HANDLE = "timeout"

# Retry Configuration
MAX_RETRY_ATTEMPTS = 3
INITIAL_RETRY_DELAY_SECONDS = 1
MAX_RETRY_DELAY_SECONDS = 60
MIN_WEBHOOK_RETRIES = 1
MAX_WEBHOOK_RETRIES = 5

# Retryable HTTP Status Codes
RETRYABLE_HTTP_STATUS_CODES = {500, 502, 503, 504, 408, 429}
DEFAULT_WEBHOOK_TIMEOUT_SECONDS = 30

# AI bounds
DEFAULT_AI_MODEL = "gpt-3.5-turbo"
MIN_AI_TEMPERATURE = 0.0
MAX_AI_TEMPERATURE = 1.0
MIN_AI_MAX_TOKENS = 50
MAX_AI_MAX_TOKENS = 4000
DEFAULT_AI_CATEGORIES = ["inquiry", "complaint", "feedback", "support", "sales", "other"]
DEFAULT_EXTRACTION_FIELDS = ["name", "email", "phone", "intent"]
AI_MODEL_MAP = {
    "gpt-3.5-turbo": "openai/gpt-3.5-turbo",
    "gpt-4": "openai/gpt-4",
    "claude-3-sonnet": "anthropic/claude-3-sonnet",
    "claude-3-haiku": "anthropic/claude-3-haiku",
}

# Business hours (Monday=0 ... Sunday=6)
DEFAULT_BUSINESS_HOURS_START = "09:00"
DEFAULT_BUSINESS_HOURS_END = "17:00"
DEFAULT_BUSINESS_DAYS = [0, 1, 2, 3, 4]
WEEKEND_DAYS = {5, 6}
DEFAULT_TIMEZONE = "UTC"
