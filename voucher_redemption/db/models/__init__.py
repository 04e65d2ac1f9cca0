from voucher_redemption.db.models.fraud_case_history import FraudCaseHistory
from voucher_redemption.db.models.fraud_cases import FraudCase
from voucher_redemption.db.models.redemptions import Redemption
from voucher_redemption.db.models.short_codes import StaticShortCode

__all__ = [
    "FraudCase",
    "FraudCaseHistory",
    "Redemption",
    "StaticShortCode",
]
