class FraudCaseError(Exception):
    pass


class FraudCaseNotFoundError(FraudCaseError):
    pass


class FraudCaseNotPendingError(FraudCaseError):
    pass


class FraudCaseAccessDeniedError(FraudCaseError):
    pass


class FraudCaseReviewInvalidError(FraudCaseError):
    pass


class FraudCaseQueryInvalidError(FraudCaseError):
    pass
