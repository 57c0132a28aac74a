"""
Configuration constants and environment setup.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# =============================================================================
# TASK SERVICE (from environment)
# =============================================================================

TASK_API_URL = os.environ.get("TASK_API_URL", "http://localhost:5005")
TASK_API_TOKEN = os.environ.get("TASK_API_TOKEN", "")
TASK_API_TIMEOUT_SECONDS = float(os.environ.get("TASK_API_TIMEOUT_SECONDS", "10"))

TASKS_PATH = "/notion/traffic/tasks"
CALENDAR_TASKS_PATH = "/tasks/calendar"

# Retried inside the client before the error reaches the mutation layer
RATE_LIMIT_RETRY_STATUS_CODES = {429, 503}
RATE_LIMIT_MAX_RETRIES = 3
RATE_LIMIT_BASE_BACKOFF_SECONDS = 1.0

# =============================================================================
# CALENDAR GRID
# =============================================================================

VISIBLE_START_HOUR = 8
VISIBLE_END_HOUR = 21  # 13 visible hours
DEFAULT_PIXELS_PER_HOUR = 80.0
MIN_TASK_HEIGHT_PX = 20.0
COLUMN_GAP_PERCENT = float(os.environ.get("COLUMN_GAP_PERCENT", "0"))
CALENDAR_TIMEZONE = os.environ.get("CALENDAR_TIMEZONE", "Europe/Paris")

# =============================================================================
# SCHEDULING RULES
# =============================================================================

BUSINESS_START_HOUR = 8
BUSINESS_END_HOUR = 20
SNAP_MINUTES = 15
MIN_DURATION_MINUTES = 15
MAX_DURATION_HOURS = 12
MIN_SELECTION_MINUTES = 30

# Special task types (rendered as day badges when split daily)
TASK_TYPES = {"task", "holiday", "remote", "school"}
SPECIAL_TASK_TYPES = {"holiday", "remote", "school"}
TASK_TYPE_EMOJIS = {
    "holiday": "🏖️",
    "remote": "🏠",
    "school": "📚",
}

# Statuses that lock a task against drag/resize
LOCKED_STATUSES = {"completed", "Terminé"}

TEMP_ID_PREFIX = "temp-"

# =============================================================================
# SYNC
# =============================================================================

POLLING_INTERVAL_SECONDS = float(os.environ.get("POLLING_INTERVAL_SECONDS", "120"))
RECONCILE_DELAY_SECONDS = float(os.environ.get("RECONCILE_DELAY_SECONDS", "1.0"))
# How long an optimistic value answered with "_pendingSync" wins over refreshes
PENDING_SYNC_HOLD_SECONDS = float(
    os.environ.get("PENDING_SYNC_HOLD_SECONDS", str(POLLING_INTERVAL_SECONDS))
)
INITIAL_RANGE_MARGIN_DAYS = 30

# =============================================================================
# NOTIFICATIONS
# =============================================================================

DEFAULT_TOAST_DURATION_MS = 4000
PERMISSION_WARNING_DURATION_MS = 5000
BATCH_UPDATE_INFO_DURATION_MS = 2000
MUTATION_HISTORY_LIMIT = 200
