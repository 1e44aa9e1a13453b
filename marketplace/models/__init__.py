from .user import User, Vendor, VendorPayoutSettings
from .subscription import SubscriptionPlan, Subscription
from .order import Product, Order, OrderItem, Transaction
from .commission import Commission, Payout
from .trial import TrialUsage
from .audit import AuditLog

__all__ = [
    'User', 'Vendor', 'VendorPayoutSettings',
    'SubscriptionPlan', 'Subscription',
    'Product', 'Order', 'OrderItem', 'Transaction',
    'Commission', 'Payout', 'TrialUsage', 'AuditLog'
]
