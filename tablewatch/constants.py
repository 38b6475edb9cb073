"""
Shared constants across detectors, services and the wire format
"""

# Alert severities, strongest first
SEVERITY_CRITICAL = "critical"
SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"
SEVERITY_LOW = "low"

SEVERITIES = [SEVERITY_CRITICAL, SEVERITY_HIGH, SEVERITY_MEDIUM, SEVERITY_LOW]

SEVERITY_SCORES = {
    SEVERITY_CRITICAL: 1.0,
    SEVERITY_HIGH: 0.8,
    SEVERITY_MEDIUM: 0.5,
    SEVERITY_LOW: 0.25,
}

SEVERITY_ORDER = {severity: rank for rank, severity in enumerate(SEVERITIES)}

# Alert types
ALERT_BOT = "bot"
ALERT_COLLUSION = "collusion"
ALERT_MULTI_ACCOUNT = "multi_account"
ALERT_CHIP_DUMPING = "chip_dumping"
ALERT_FRAUD = "fraud"

ALERT_TYPES = [ALERT_BOT, ALERT_COLLUSION, ALERT_MULTI_ACCOUNT, ALERT_CHIP_DUMPING, ALERT_FRAUD]

# Alert lifecycle
STATUS_PENDING = "pending"
STATUS_REVIEWED = "reviewed"
STATUS_DISMISSED = "dismissed"
STATUS_CONFIRMED = "confirmed"

TERMINAL_STATUSES = [STATUS_REVIEWED, STATUS_DISMISSED, STATUS_CONFIRMED]

# Player action types
ACTION_TYPES = ["bet", "fold", "raise", "check", "call", "all_in", "timeout"]
BET_ACTIONS = ["bet", "raise"]
VOLUNTARY_ACTIONS = ["call", "bet", "raise", "all_in"]
PREFLOP_RAISE_ACTIONS = ["raise", "all_in"]
PREFLOP_PHASE = "preflop"

# Rule categories -> alert types
RULE_CATEGORY_ALERT_TYPES = {
    "volume": ALERT_BOT,
    "timing": ALERT_BOT,
    "pattern": ALERT_BOT,
    "identity": ALERT_MULTI_ACCOUNT,
}

# Risk breakdown keys on the wire
RISK_BREAKDOWN_KEYS = ["bot", "collusion", "multi_account", "rule_violation", "alert_history"]

# Risk levels
RISK_LOW = "low"
RISK_MEDIUM = "medium"
RISK_HIGH = "high"
RISK_CRITICAL = "critical"

# Wire headers attached to every published alert
ALERT_HEADER_FIELDS = ["alert_type", "severity", "agent_id", "club_id"]

# Fingerprinting
DEFAULT_FINGERPRINT_SALT = "poker-platform-fingerprint-v1"

# Time windows (seconds)
HOUR = 3600
DAY = 24 * HOUR
