"""
Error taxonomy of the financial core.

Every error carries a human-readable message and a stable code so the API
layer can render an actionable 4xx response.
"""


class MarketplaceError(Exception):
    """Base error for rejected marketplace operations."""
    http_status = 400
    default_code = 'MARKETPLACE_ERROR'

    def __init__(self, message, code=None, details=None):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self):
        return {
            'message': self.message,
            'code': self.code,
            'details': self.details
        }


class NotFound(MarketplaceError):
    http_status = 404
    default_code = 'NOT_FOUND'

    def __init__(self, resource, identifier):
        super().__init__(
            f"{resource} not found",
            details={'resource': resource, 'id': identifier}
        )


class InvalidInput(MarketplaceError):
    default_code = 'INVALID_INPUT'


class InvalidState(MarketplaceError):
    http_status = 409
    default_code = 'INVALID_STATE'


class Forbidden(MarketplaceError):
    http_status = 403
    default_code = 'FORBIDDEN'


class InsufficientBalance(MarketplaceError):
    default_code = 'INSUFFICIENT_BALANCE'

    def __init__(self, available, requested):
        super().__init__(
            f"Insufficient balance. Available: ${available:.2f}, Requested: ${requested:.2f}",
            details={'available': str(available), 'requested': str(requested)}
        )


class BelowMinimumPayout(MarketplaceError):
    default_code = 'BELOW_MINIMUM_PAYOUT'

    def __init__(self, minimum, requested):
        super().__init__(
            f"Minimum payout amount is ${minimum:.2f}",
            details={'minimum': str(minimum), 'requested': str(requested)}
        )


class NoActiveSubscription(MarketplaceError):
    default_code = 'NO_ACTIVE_SUBSCRIPTION'

    def __init__(self, vendor_id):
        super().__init__(
            'No active subscription found. Please subscribe to a plan first.',
            details={'vendor_id': vendor_id}
        )


class PayoutProcessingError(MarketplaceError):
    """Raised by payout gateways; stored on the payout, not returned to clients."""
    http_status = 502
    default_code = 'PAYOUT_PROCESSING_FAILED'


class TrialNotAllowed(InvalidState):
    http_status = 403
    default_code = 'TRIAL_NOT_ALLOWED'

    def __init__(self, result):
        super().__init__(
            'Trial not allowed due to fraud prevention',
            details={
                'fraudScore': result.fraud_score,
                'riskLevel': result.risk_level,
                'reasons': list(result.reasons),
            }
        )
