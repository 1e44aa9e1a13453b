import logging
from collections import defaultdict
from datetime import timedelta
from decimal import Decimal

from marketplace.models.commission import CommissionStatus, PayoutStatus
from marketplace.models.subscription import BillingCycle
from marketplace.models.trial import TrialStatus
from marketplace.services.commission_engine import resolve_order_total
from marketplace.utils.clock import utcnow
from marketplace.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)


def _rate(part, whole):
    if not whole:
        return 0.0
    return round(part / whole * 100, 2)


class ReportingService:
    """Read-only roll-ups for dashboards."""

    def __init__(self, store, payouts):
        self.store = store
        self.payouts = payouts

    def _totals(self, commissions):
        total_sales = ZERO
        total_commission = ZERO
        rates = []
        for commission in commissions:
            order_total, _ = resolve_order_total(commission)
            total_sales += order_total
            total_commission += to_money(commission.amount)
            rates.append(Decimal(commission.rate))

        average_rate = (sum(rates) / len(rates)).quantize(Decimal('0.0001')) if rates else Decimal('0')
        return {
            'total_sales': total_sales,
            'total_commission': total_commission,
            'total_net_payout': total_sales - total_commission,
            'commission_count': len(rates),
            'average_rate': average_rate,
        }

    def commission_summary(self, vendor_id, start=None, end=None):
        self.store.get_vendor(vendor_id)
        commissions = [
            c for c in self.store.commissions_between(start, end, vendor_id=vendor_id)
            if c.status != CommissionStatus.CANCELLED
        ]
        summary = self._totals(commissions)
        summary['vendor_id'] = vendor_id
        summary['period'] = {'start': start, 'end': end}
        return summary

    def commission_report(self, start=None, end=None, vendor_id=None):
        commissions = [
            c for c in self.store.commissions_between(start, end, vendor_id=vendor_id)
            if c.status != CommissionStatus.CANCELLED
        ]
        by_vendor = defaultdict(list)
        for commission in commissions:
            by_vendor[commission.vendor_id].append(commission)

        vendors = []
        for vid, items in by_vendor.items():
            row = self._totals(items)
            row['vendor_id'] = vid
            row['by_status'] = dict(_count_by(items, 'status'))
            vendors.append(row)
        vendors.sort(key=lambda row: row['total_commission'], reverse=True)

        report = self._totals(commissions)
        report['period'] = {'start': start, 'end': end}
        report['vendors'] = vendors
        return report

    def vendor_wallet(self, vendor_id, now=None):
        now = now or utcnow()
        balance = self.payouts.get_balance_breakdown(vendor_id)
        payouts = self.store.payouts_for_vendor(vendor_id)
        commissions = [
            c for c in self.store.commissions_for_vendor(vendor_id)
            if c.status != CommissionStatus.CANCELLED
        ]

        recent_since = now - timedelta(days=30)
        recent_earnings = ZERO
        for commission in commissions:
            if commission.created_at and commission.created_at >= recent_since:
                order_total, _ = resolve_order_total(commission)
                recent_earnings += order_total - to_money(commission.amount)

        unassigned = self.store.unassigned_commissions(vendor_id)
        unassigned_amount = ZERO
        for commission in unassigned:
            order_total, _ = resolve_order_total(commission)
            unassigned_amount += order_total - to_money(commission.amount)

        return {
            'vendor_id': vendor_id,
            'available_balance': balance['available_balance'],
            'total_earnings': balance['total_earnings'],
            'total_paid_out': sum(
                (to_money(p.amount) for p in payouts if p.status == PayoutStatus.COMPLETED), ZERO
            ),
            'pending_payouts': sum(
                (to_money(p.amount) for p in payouts
                 if p.status in (PayoutStatus.PENDING, PayoutStatus.PROCESSING)), ZERO
            ),
            'last_30_days_earnings': recent_earnings,
            'unassigned_commission_count': len(unassigned),
            'unassigned_commission_amount': unassigned_amount,
            'minimum_payout': self.payouts.minimum_payout(vendor_id),
        }

    def trial_stats(self):
        total = self.store.count_trials()
        active = self.store.count_trials(status=TrialStatus.ACTIVE)
        converted = self.store.count_trials(status=TrialStatus.CONVERTED)
        fraudulent = self.store.count_trials(is_fraudulent=True)
        return {
            'total_trials': total,
            'active_trials': active,
            'converted_trials': converted,
            'fraudulent_trials': fraudulent,
            'conversion_rate': _rate(converted, total),
            'fraud_rate': _rate(fraudulent, total),
        }

    def recent_trials(self, limit=50, status=None):
        return self.store.trials(status=status, limit=limit)

    def finance_dashboard(self, now=None):
        now = now or utcnow()
        subscriptions = [
            s for s in self.store.active_subscriptions()
            if s.end_date is None or s.end_date >= now
        ]

        mrr = ZERO
        per_tier = defaultdict(int)
        for subscription in subscriptions:
            price = to_money(subscription.price)
            if subscription.billing_cycle == BillingCycle.YEARLY:
                price = to_money(price / 12)
            mrr += price
            per_tier[subscription.tier] += 1

        commissions = [
            c for c in self.store.commissions_between()
            if c.status != CommissionStatus.CANCELLED
        ]
        pending = self.store.payouts_with_status(PayoutStatus.PENDING, PayoutStatus.PROCESSING)

        return {
            'monthly_recurring_revenue': mrr,
            'commission_revenue': sum((to_money(c.amount) for c in commissions), ZERO),
            'pending_payout_total': sum((to_money(p.amount) for p in pending), ZERO),
            'pending_payout_count': len(pending),
            'active_subscriptions': len(subscriptions),
            'subscriptions_by_tier': dict(per_tier),
        }


def _count_by(items, attribute):
    counts = defaultdict(int)
    for item in items:
        counts[getattr(item, attribute)] += 1
    return counts
