RAPID_REDEMPTION_WINDOW_MINUTES = 5
RAPID_REDEMPTION_HIGH_MINUTES = 1
VELOCITY_WARNING_KM_PER_HOUR = 60
VELOCITY_HIGH_KM_PER_HOUR = 100
LOCATION_ANOMALY_KM = 30
LOCATION_ANOMALY_HIGH_KM = 50
LOCATION_PATTERN_MIN_POINTS = 3
LOCATION_PATTERN_MAX_POINTS = 10
DEVICE_REUSE_WARNING_CUSTOMERS = 3
DEVICE_REUSE_HIGH_CUSTOMERS = 5

SEVERITY_SCORES = {"HIGH": 40, "MEDIUM": 20, "LOW": 10}
MAX_RISK_SCORE = 100
HIGH_RISK_LOG_SCORE = 70

LAST_REDEMPTION_TTL_SECONDS = 3600
LOCATION_HISTORY_TTL_SECONDS = 86400
LOCATION_PATTERN_TTL_SECONDS = 86400 * 7
DEVICE_CUSTOMERS_TTL_SECONDS = 86400
FRAUD_LOG_TTL_SECONDS = 86400 * 30
FRAUD_LOG_MAX_ENTRIES = 100

ADMIN_HIGH_RISK_LOG_KEY = "fraud:log:admin:high_risk"
BLOCKED_DEVICES_KEY = "fraud:blocked_devices"

FRAUD_CASE_STATUS_PENDING = "PENDING"
FRAUD_CASE_REVIEW_STATUSES = ("APPROVED", "REJECTED", "FALSE_POSITIVE")
FRAUD_CASE_STATUSES = (FRAUD_CASE_STATUS_PENDING, *FRAUD_CASE_REVIEW_STATUSES)
FRAUD_CASE_ACTIONS = ("block_customer", "void_redemption", "flag_provider", "whitelist_pattern")
FRAUD_CASE_NOTES_MAX_LENGTH = 500
SYSTEM_ACTOR_ID = "00000000-0000-0000-0000-000000000000"


def last_redemption_key(customer_id: object) -> str:
    return f"fraud:last_redemption:{customer_id}"


def location_history_key(customer_id: object) -> str:
    return f"fraud:location_history:{customer_id}"


def location_pattern_key(customer_id: object) -> str:
    return f"fraud:location_pattern:{customer_id}"


def device_customers_key(device_id: str) -> str:
    return f"fraud:device_customers:{device_id}"


def fraud_log_key(scope: str, subject_id: object | None = None) -> str:
    if scope == "admin":
        return ADMIN_HIGH_RISK_LOG_KEY
    return f"fraud:log:{scope}:{subject_id}"
FRAUD_CASE_NUMBER_ATTEMPTS = 5
FRAUD_CASE_LIST_MAX_LIMIT = 100
FRAUD_STATISTICS_PERIOD_DAYS = {"day": 1, "week": 7, "month": 30, "year": 365, "all": None}
