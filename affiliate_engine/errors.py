"""
Domain errors raised by the affiliate services.
The API layer maps these to HTTP responses; nothing here is retried automatically.
"""


class AffiliateError(Exception):
    """Base class for affiliate engine errors."""
    error_code = "affiliate_error"


class InsufficientBalance(AffiliateError):
    """Requested payout exceeds the available confirmed balance."""
    error_code = "insufficient_balance"

    def __init__(self, requested, available):
        self.requested = requested
        self.available = available
        super().__init__(f"Requested {requested} exceeds available balance {available}")


class InvalidPayoutDetails(AffiliateError):
    """Payout method details are missing or malformed."""
    error_code = "invalid_payout_details"


class InvalidPayoutAmount(AffiliateError):
    error_code = "invalid_payout_amount"


class InvalidStatusTransition(AffiliateError):
    """A commission or payout status change that the lifecycle does not allow."""
    error_code = "invalid_status_transition"

    def __init__(self, entity: str, current: str, requested: str):
        self.entity = entity
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move {entity} from {current} to {requested}")


class AffiliateNotFound(AffiliateError):
    error_code = "not_found"


class AlreadyAffiliate(AffiliateError):
    error_code = "already_affiliate"
