"""
Central alerting and snapshot constants.

All statuses, operators, intervals and retention limits are defined here as the
single source of truth. Import from this module instead of hardcoding values.
"""

# --- Alert statuses ---
STATUS_OK = "ok"
STATUS_WARNING = "warning"
STATUS_CRITICAL = "critical"
STATUS_RECOVERY = "recovery"  # History/notification only; never stored as current_status

ALERT_STATUSES = (STATUS_OK, STATUS_WARNING, STATUS_CRITICAL)

# --- Notification severities (what a transition fires) ---
SEVERITY_WARNING = "warning"
SEVERITY_CRITICAL = "critical"
SEVERITY_RECOVERY = "recovery"

SEVERITIES = (SEVERITY_WARNING, SEVERITY_CRITICAL, SEVERITY_RECOVERY)

# --- Operators ---
OP_GREATER_THAN = "gt"
OP_LESS_THAN = "lt"
OP_EQUALS = "eq"
OP_GREATER_EQUAL = "gte"
OP_LESS_EQUAL = "lte"
OP_CHANGE_PERCENT = "change_pct"
OP_INCREASE_PERCENT = "increase_pct"
OP_DECREASE_PERCENT = "decrease_pct"

THRESHOLD_OPERATORS = (
    OP_GREATER_THAN,
    OP_LESS_THAN,
    OP_EQUALS,
    OP_GREATER_EQUAL,
    OP_LESS_EQUAL,
)
PERCENT_OPERATORS = (OP_CHANGE_PERCENT, OP_INCREASE_PERCENT, OP_DECREASE_PERCENT)
OPERATORS = THRESHOLD_OPERATORS + PERCENT_OPERATORS

OPERATOR_LABELS = {
    OP_GREATER_THAN: "exceeds",
    OP_LESS_THAN: "is below",
    OP_EQUALS: "equals",
    OP_GREATER_EQUAL: "is at or above",
    OP_LESS_EQUAL: "is at or below",
    OP_CHANGE_PERCENT: "changed by",
    OP_INCREASE_PERCENT: "increased by",
    OP_DECREASE_PERCENT: "decreased by",
}

# Float comparison tolerance for eq and for "baseline is zero"
FLOAT_TOLERANCE = 0.0001

# --- Channels ---
CHANNEL_INAPP = "inapp"
CHANNEL_EMAIL = "email"
CHANNELS = (CHANNEL_INAPP, CHANNEL_EMAIL)

# --- Report sources ---
SOURCE_PRIMARY = "primary"      # Definition SQL run locally
SOURCE_SECONDARY = "secondary"  # Remote value, or remote-supplied SQL run locally
REPORT_SOURCES = (SOURCE_PRIMARY, SOURCE_SECONDARY)

# --- Alert check intervals (seconds) ---
MIN_CHECK_INTERVAL = 300
DEFAULT_CHECK_INTERVAL = 3600
DEFAULT_COOLDOWN_SECONDS = 3600  # Stored only; fire log is the suppression mechanism
MAX_HISTORY_PER_ALERT = 100

# --- Snapshot schedule intervals (seconds) ---
MIN_SNAPSHOT_INTERVAL = 300       # 5 minutes
MAX_SNAPSHOT_INTERVAL = 604800    # 1 week
DEFAULT_SNAPSHOT_INTERVAL = 3600
MAX_SNAPSHOTS_PER_PAIR = 30

# --- Trend ---
TREND_NOISE_PERCENT = 0.5  # |change| below this is reported as neutral
