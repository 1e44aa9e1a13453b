import logging

from marketplace.models import Subscription
from marketplace.models.subscription import BillingCycle, SubscriptionStatus
from marketplace.utils.clock import utcnow
from marketplace.utils.money import to_money

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Keeps at most one ACTIVE subscription per vendor."""

    def __init__(self, store):
        self.store = store

    def activate(self, vendor_id, plan, price=None, start_date=None, end_date=None,
                 trial_end_date=None, stripe_customer_id=None, actor_id='SYSTEM'):
        start_date = start_date or utcnow()

        with self.store.atomic():
            replaced = self.store.subscriptions_with_status(vendor_id, SubscriptionStatus.ACTIVE)
            for previous in replaced:
                previous.status = SubscriptionStatus.INACTIVE
                previous.end_date = previous.end_date or start_date

            subscription = self.store.add(Subscription(
                vendor_id=vendor_id,
                plan_id=plan.id,
                tier=plan.tier,
                status=SubscriptionStatus.ACTIVE,
                price=to_money(plan.price if price is None else price),
                billing_cycle=plan.billing_cycle or BillingCycle.MONTHLY,
                start_date=start_date,
                end_date=end_date,
                trial_end_date=trial_end_date,
                stripe_customer_id=stripe_customer_id,
            ))
            self.store.flush()
            self.store.audit(actor_id, 'ACTIVATE_SUBSCRIPTION', 'SUBSCRIPTION', subscription.id, {
                'vendor_id': vendor_id,
                'plan_id': plan.id,
                'tier': plan.tier,
                'price': str(subscription.price),
                'replaced': [s.id for s in replaced],
            })

        logger.info('Vendor %s subscribed to %s (%s)', vendor_id, plan.name, plan.tier)
        return subscription

    def trial_subscription(self, vendor_id, plan_id):
        """The vendor's running trial subscription on a plan, if any."""
        for subscription in self.store.subscriptions_with_status(vendor_id, SubscriptionStatus.ACTIVE):
            if subscription.plan_id == plan_id and subscription.trial_end_date is not None:
                return subscription
        return None

    def convert_trial(self, subscription, plan):
        """Turn a trial subscription into a paid one at the plan's price."""
        subscription.price = to_money(plan.price)
        subscription.end_date = None

    def end_trial(self, subscription, status=SubscriptionStatus.INACTIVE, now=None):
        subscription.status = status
        subscription.end_date = now or utcnow()
