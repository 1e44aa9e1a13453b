"""
Ledger store: the single data-access seam of the financial core.

Engines receive one LedgerStore at construction instead of reaching for the
global session themselves, so tests can build them against any session.
"""
import logging
import threading
import weakref
from contextlib import contextmanager
from datetime import timedelta

from sqlalchemy import or_

from marketplace.errors import NotFound
from marketplace.models import (
    AuditLog, Commission, Order, Payout, Subscription, SubscriptionPlan,
    TrialUsage, User, Vendor, VendorPayoutSettings
)
from marketplace.models.commission import CommissionStatus
from marketplace.models.subscription import SubscriptionStatus
from marketplace.models.trial import TrialStatus
from marketplace.utils.clock import utcnow

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger('audit')


class LedgerStore:

    def __init__(self, session):
        self.session = session
        self._local = threading.local()
        self._registry_lock = threading.Lock()
        # Entries vanish once no thread holds or waits on the lock
        self._vendor_locks = weakref.WeakValueDictionary()

    # ===== Transaction Management =====

    @contextmanager
    def atomic(self):
        """Commit once the outermost block exits; roll everything back on error."""
        depth = getattr(self._local, 'depth', 0)
        self._local.depth = depth + 1
        try:
            yield self.session
            if depth == 0:
                self.session.commit()
        except Exception:
            if depth == 0:
                self.session.rollback()
            raise
        finally:
            self._local.depth = depth

    def _lock_for(self, vendor_id):
        with self._registry_lock:
            lock = self._vendor_locks.get(vendor_id)
            if lock is None:
                lock = self._vendor_locks[vendor_id] = threading.Lock()
            return lock

    @contextmanager
    def vendor_lock(self, vendor_id):
        """Serialize balance-changing work for one vendor.

        The process lock covers databases that ignore FOR UPDATE; the row
        lock covers several worker processes sharing one database.
        """
        with self._lock_for(vendor_id):
            with self.atomic():
                vendor = (
                    self.session.query(Vendor)
                    .filter(Vendor.id == vendor_id)
                    .with_for_update()
                    .one_or_none()
                )
                if vendor is None:
                    raise NotFound('Vendor', vendor_id)
                yield vendor

    def lock_payout(self, payout_id):
        """Re-read a payout under a row lock, discarding any stale in-session state."""
        payout = (
            self.session.query(Payout)
            .filter(Payout.id == payout_id)
            .populate_existing()
            .with_for_update()
            .one_or_none()
        )
        if payout is None:
            raise NotFound('Payout', payout_id)
        return payout

    # ===== Generic access =====

    def get(self, model, identifier):
        if identifier is None:
            return None
        return self.session.get(model, identifier)

    def get_or_fail(self, model, identifier, resource=None):
        instance = self.get(model, identifier)
        if instance is None:
            raise NotFound(resource or model.__name__, identifier)
        return instance

    def add(self, instance):
        self.session.add(instance)
        return instance

    def delete(self, instance):
        self.session.delete(instance)

    def flush(self):
        self.session.flush()

    def audit(self, actor_id, action, resource, resource_id=None, details=None):
        entry = AuditLog(
            actor_id=actor_id or 'SYSTEM',
            action=action,
            resource=resource,
            resource_id=resource_id,
            details=details or {}
        )
        self.session.add(entry)
        audit_logger.info('%s %s %s/%s %s', entry.actor_id, action, resource, resource_id, entry.details)
        return entry

    # ===== Vendors and subscriptions =====

    def get_vendor(self, vendor_id):
        return self.get_or_fail(Vendor, vendor_id, 'Vendor')

    def vendor_for_user(self, user_id):
        return self.session.query(Vendor).filter_by(user_id=user_id).first()

    def active_subscription(self, vendor_id, now=None):
        now = now or utcnow()
        return (
            self.session.query(Subscription)
            .filter(
                Subscription.vendor_id == vendor_id,
                Subscription.status == SubscriptionStatus.ACTIVE,
                Subscription.start_date <= now,
                or_(Subscription.end_date.is_(None), Subscription.end_date >= now)
            )
            .order_by(Subscription.created_at.desc())
            .first()
        )

    def active_subscriptions(self):
        return (
            self.session.query(Subscription)
            .filter(Subscription.status == SubscriptionStatus.ACTIVE)
            .all()
        )

    def subscriptions_with_status(self, vendor_id, status):
        return (
            self.session.query(Subscription)
            .filter_by(vendor_id=vendor_id, status=status)
            .all()
        )

    def payout_settings(self, vendor_id):
        return self.session.query(VendorPayoutSettings).filter_by(vendor_id=vendor_id).first()

    def due_payout_settings(self, now):
        return (
            self.session.query(VendorPayoutSettings)
            .filter(
                VendorPayoutSettings.is_active.is_(True),
                VendorPayoutSettings.next_payout_date <= now
            )
            .all()
        )

    # ===== Commissions and payouts =====

    def commission_for_order(self, order_id):
        return self.session.query(Commission).filter_by(order_id=order_id).first()

    def commissions_for_vendor(self, vendor_id):
        return (
            self.session.query(Commission)
            .filter_by(vendor_id=vendor_id)
            .order_by(Commission.created_at.asc(), Commission.id.asc())
            .all()
        )

    def unassigned_commissions(self, vendor_id):
        """Commissions still eligible for a payout, oldest first."""
        return (
            self.session.query(Commission)
            .filter(
                Commission.vendor_id == vendor_id,
                Commission.payout_id.is_(None),
                Commission.status.in_(CommissionStatus.PAYABLE)
            )
            .order_by(Commission.created_at.asc(), Commission.id.asc())
            .all()
        )

    def commissions_for_payout(self, payout_id):
        return self.session.query(Commission).filter_by(payout_id=payout_id).all()

    def commissions_between(self, start=None, end=None, vendor_id=None):
        query = self.session.query(Commission)
        if vendor_id:
            query = query.filter(Commission.vendor_id == vendor_id)
        if start:
            query = query.filter(Commission.created_at >= start)
        if end:
            query = query.filter(Commission.created_at <= end)
        return query.order_by(Commission.created_at.asc()).all()

    def payouts_for_vendor(self, vendor_id):
        return (
            self.session.query(Payout)
            .filter_by(vendor_id=vendor_id)
            .order_by(Payout.created_at.desc())
            .all()
        )

    def payouts_with_status(self, *statuses):
        return (
            self.session.query(Payout)
            .filter(Payout.status.in_(statuses))
            .order_by(Payout.created_at.asc())
            .all()
        )

    def unlink_commissions(self, payout_id):
        """Return a payout's commissions to the unassigned pool."""
        commissions = self.commissions_for_payout(payout_id)
        for commission in commissions:
            commission.payout_id = None
        return len(commissions)

    # ===== Orders =====

    def get_order(self, order_id):
        return self.get_or_fail(Order, order_id, 'Order')

    # ===== Trials =====

    def get_plan(self, plan_id):
        return self.get_or_fail(SubscriptionPlan, plan_id, 'Subscription plan')

    def get_user(self, user_id):
        return self.get(User, user_id)

    def prior_trial_count(self, user_id, email, ip_address, phone_number=None, card_last4=None):
        conditions = [
            TrialUsage.user_id == user_id,
            TrialUsage.email == email,
            TrialUsage.ip_address == ip_address,
        ]
        if phone_number:
            conditions.append(TrialUsage.phone_number == phone_number)
        if card_last4:
            conditions.append(TrialUsage.payment_card_last4 == card_last4)
        return self.session.query(TrialUsage).filter(or_(*conditions)).count()

    def trials_from_ip(self, ip_address, since):
        return (
            self.session.query(TrialUsage)
            .filter(TrialUsage.ip_address == ip_address, TrialUsage.created_at >= since)
            .count()
        )

    def trials_from_domain(self, domain, since):
        return (
            self.session.query(TrialUsage)
            .filter(TrialUsage.email.endswith(f'@{domain}'), TrialUsage.created_at >= since)
            .count()
        )

    def trials(self, status=None, limit=None):
        query = self.session.query(TrialUsage).order_by(TrialUsage.created_at.desc())
        if status:
            query = query.filter(TrialUsage.status == status)
        if limit:
            query = query.limit(limit)
        return query.all()

    def expired_active_trials(self, now):
        return (
            self.session.query(TrialUsage)
            .filter(TrialUsage.status == TrialStatus.ACTIVE, TrialUsage.trial_end_date < now)
            .all()
        )

    def count_trials(self, **filters):
        return self.session.query(TrialUsage).filter_by(**filters).count()


def lookback(now, days):
    return now - timedelta(days=days)
