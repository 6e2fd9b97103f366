"""Default values used across the project."""

# Database defaults
DEFAULT_DB_NAME = "Node_Tutorial"
JOBS_COLLECTION = "agendaJobs"

# Job queue
DEFAULT_PROCESS_EVERY_SECONDS = 5
DEFAULT_MAX_CONCURRENCY = 5
DEFAULT_CONCURRENCY = 1
DEFAULT_LOCK_LIFETIME_SECONDS = 10 * 60
DEFAULT_READY_TIMEOUT_SECONDS = 15
DEFAULT_STATUS_LOG_INTERVAL_SECONDS = 15
DEFAULT_SHUTDOWN_GRACE_SECONDS = 10

# Timers
DEFAULT_TIMEZONE = "UTC"

# Server defaults
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8000
