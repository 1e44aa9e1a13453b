"""
Commission calculation.

The rate is resolved from the vendor's subscription when the order is placed
and frozen into the commission's ``breakdown``; later tier changes never
touch historical commissions.
"""
import logging
from decimal import Decimal

from marketplace.errors import InvalidInput, InvalidState
from marketplace.models import Commission
from marketplace.models.commission import CommissionStatus
from marketplace.models.subscription import SubscriptionTier
from marketplace.utils.clock import utcnow
from marketplace.utils.money import to_money

logger = logging.getLogger(__name__)

COMMISSION_RATES = {
    SubscriptionTier.BASIC: Decimal('0.20'),
    SubscriptionTier.PRO: Decimal('0.15'),
    SubscriptionTier.PREMIUM: Decimal('0.15'),
    SubscriptionTier.ENTERPRISE: Decimal('0.10'),
}

RATE_FROM_SUBSCRIPTION = 'subscription'
RATE_DEFAULT = 'default'

TOTAL_FROM_SNAPSHOT = 'snapshot'
TOTAL_FROM_ORDER = 'order'


def rate_for_tier(tier, default_rate):
    """Map a subscription tier to (rate, source); unknown tiers use the default."""
    rate = COMMISSION_RATES.get(tier)
    if rate is None:
        return default_rate, RATE_DEFAULT
    return rate, RATE_FROM_SUBSCRIPTION


def resolve_order_total(commission):
    """Order total a commission was computed from, tagged with where it came from.

    The breakdown snapshot wins; commissions written before snapshots existed
    fall back to the order's current total.
    """
    snapshot = (commission.breakdown or {}).get('orderTotal')
    if snapshot is not None:
        return to_money(snapshot), TOTAL_FROM_SNAPSHOT
    if commission.order is not None:
        return to_money(commission.order.total_price), TOTAL_FROM_ORDER
    return to_money(0), TOTAL_FROM_ORDER


def vendor_net(commission):
    """Vendor's share of one commissioned order."""
    order_total, _ = resolve_order_total(commission)
    return order_total - to_money(commission.amount)


class CommissionEngine:

    def __init__(self, store, default_rate=Decimal('0.15')):
        self.store = store
        self.default_rate = Decimal(default_rate)

    def calculate_commission(self, order_id, vendor_id, order_total, now=None):
        """Compute the commission for an order without writing anything."""
        total = to_money(order_total)
        if total <= 0:
            raise InvalidInput('Order total must be greater than zero',
                               details={'order_total': str(order_total)})

        self.store.get_vendor(vendor_id)
        subscription = self.store.active_subscription(vendor_id, now=now)

        tier = subscription.tier if subscription else None
        if tier is None:
            rate, source = self.default_rate, RATE_DEFAULT
        else:
            rate, source = rate_for_tier(tier, self.default_rate)

        commission_amount = to_money(total * rate)
        net_payout = total - commission_amount

        return {
            'order_id': order_id,
            'vendor_id': vendor_id,
            'order_total': total,
            'rate': rate,
            'tier': tier,
            'rate_source': source,
            'commission_amount': commission_amount,
            'net_payout': net_payout,
        }

    def record_commission(self, order, status=CommissionStatus.CALCULATED, actor_id='SYSTEM'):
        """Persist the commission for an order; one per order."""
        existing = self.store.commission_for_order(order.id)
        if existing is not None:
            logger.info('Commission already exists for order %s', order.id)
            return existing

        if status not in (CommissionStatus.PENDING, CommissionStatus.CALCULATED):
            raise InvalidInput(f'New commissions cannot start as {status}')

        calculation = self.calculate_commission(order.id, order.vendor_id, order.total_price)
        now = utcnow()

        with self.store.atomic():
            commission = self.store.add(Commission(
                order_id=order.id,
                vendor_id=order.vendor_id,
                amount=calculation['commission_amount'],
                rate=calculation['rate'],
                status=status,
                calculated_at=now if status == CommissionStatus.CALCULATED else None,
                breakdown={
                    'orderTotal': str(calculation['order_total']),
                    'rate': str(calculation['rate']),
                    'tier': calculation['tier'],
                    'rateSource': calculation['rate_source'],
                    'commissionAmount': str(calculation['commission_amount']),
                    'netPayout': str(calculation['net_payout']),
                }
            ))
            self.store.flush()
            self.store.audit(actor_id, 'CREATE_COMMISSION', 'COMMISSION', commission.id, {
                'order_id': order.id,
                'vendor_id': order.vendor_id,
                'amount': str(calculation['commission_amount']),
                'rate': str(calculation['rate']),
            })

        logger.info('Commission %s recorded for order %s at rate %s',
                    commission.id, order.id, calculation['rate'])
        return commission

    def transition_commission(self, commission_id, status, actor_id='SYSTEM'):
        """Move a commission to a new status; re-applying the current one is a no-op."""
        if status not in CommissionStatus.TRANSITIONS:
            raise InvalidInput(f'Unknown commission status: {status}')

        commission = self.store.get_or_fail(Commission, commission_id, 'Commission')
        if commission.status == status:
            return commission

        if status not in CommissionStatus.TRANSITIONS[commission.status]:
            raise InvalidState(
                f'Commission cannot move from {commission.status} to {status}',
                details={'commission_id': commission.id}
            )
        if status == CommissionStatus.CANCELLED and commission.payout_id:
            raise InvalidState(
                'Commission is part of a payout and cannot be cancelled',
                details={'commission_id': commission.id, 'payout_id': commission.payout_id}
            )

        previous = commission.status
        with self.store.atomic():
            commission.status = status
            now = utcnow()
            if status == CommissionStatus.CALCULATED:
                commission.calculated_at = now
            elif status == CommissionStatus.PAID:
                commission.paid_at = now
            self.store.audit(actor_id, 'UPDATE_COMMISSION_STATUS', 'COMMISSION', commission.id, {
                'from': previous,
                'to': status,
            })
        return commission
