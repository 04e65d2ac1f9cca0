from datetime import timedelta

SHORT_CODE_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZ"
SHORT_CODE_LENGTH = 8
SHORT_CODE_MIN_LENGTH = 4
SHORT_CODE_MAX_LENGTH = 16
SHORT_CODE_KEY_PREFIX = "shortcode:"
STATIC_SHORT_CODE_CACHE_TTL_SECONDS = 3600
SHORT_CODE_GENERATION_ATTEMPTS = 10

VOUCHER_STATE_PUBLISHED = "PUBLISHED"
VOUCHER_STATE_REDEEMED = "REDEEMED"
DISCOUNT_TYPE_PERCENTAGE = "percentage"
REDEMPTION_INSTRUCTIONS = "Show this confirmation to the staff"

OFFLINE_SYNC_MAX_CLOCK_SKEW = timedelta(minutes=5)

FRAUD_RETRY_KEY_PREFIX = "fraud:retry:"
VOUCHER_STATE_RETRY_KEY_PREFIX = "voucher:state:retry:"
RATE_LIMIT_KEY_PREFIX = "ratelimit:redeem:"


def voucher_stats_cache_key(voucher_id: object) -> str:
    return f"voucher:{voucher_id}:stats"


def provider_redemptions_cache_key(provider_id: object) -> str:
    return f"provider:{provider_id}:redemptions"


REDEMPTION_LIST_MAX_LIMIT = 100
PROVIDER_TOP_VOUCHERS_LIMIT = 10
