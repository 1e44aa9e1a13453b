"""
Payout settlement.

Available balance is the vendor's net earnings minus every payout ever
requested, whatever its status. A payout reserves its amount the moment it
is created; only deleting it gives the amount back.
"""
import logging
from datetime import timedelta
from decimal import Decimal

from dateutil.relativedelta import relativedelta

from marketplace.errors import (
    BelowMinimumPayout, InsufficientBalance, InvalidInput, InvalidState,
    MarketplaceError, NoActiveSubscription, PayoutProcessingError
)
from marketplace.models import Payout, VendorPayoutSettings
from marketplace.models.commission import CommissionStatus, PayoutStatus
from marketplace.models.user import PayoutFrequency, PayoutMethod
from marketplace.services.commission_engine import vendor_net
from marketplace.utils.clock import utcnow
from marketplace.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)

MINIMUM_PAYOUT_FLOOR = Decimal('10')
MINIMUM_PAYOUT_CEILING = Decimal('10000')


def next_payout_date(after, frequency):
    if frequency == PayoutFrequency.DAILY:
        return after + timedelta(days=1)
    if frequency == PayoutFrequency.MONTHLY:
        return after + relativedelta(months=1)
    return after + timedelta(weeks=1)


def _parse_amount(amount):
    try:
        return to_money(amount)
    except (TypeError, ValueError) as e:
        raise InvalidInput('Amount must be a number', details={'amount': str(amount)}) from e


class PayoutEngine:

    def __init__(self, store, gateways, notifier=None, default_minimum=Decimal('50')):
        self.store = store
        self.gateways = gateways
        self.notifier = notifier
        self.default_minimum = to_money(default_minimum)

    # ===== Balance =====

    def get_balance_breakdown(self, vendor_id):
        self.store.get_vendor(vendor_id)

        total_earnings = sum(
            (vendor_net(c) for c in self.store.commissions_for_vendor(vendor_id)
             if c.status != CommissionStatus.CANCELLED),
            ZERO
        )
        total_payouts = sum(
            (to_money(p.amount) for p in self.store.payouts_for_vendor(vendor_id)),
            ZERO
        )
        return {
            'vendor_id': vendor_id,
            'total_earnings': total_earnings,
            'total_payouts': total_payouts,
            'available_balance': total_earnings - total_payouts,
        }

    def get_available_balance(self, vendor_id):
        return self.get_balance_breakdown(vendor_id)['available_balance']

    def minimum_payout(self, vendor_id):
        settings = self.store.payout_settings(vendor_id)
        if settings is None or settings.minimum_payout is None:
            return self.default_minimum
        return to_money(settings.minimum_payout)

    # ===== Requests =====

    def request_payout(self, vendor_id, amount, notes=None, actor_id=None):
        """Validate and create a PENDING payout, linking commissions to cover it.

        Runs under the vendor lock so two requests can never both spend the
        same balance.
        """
        self.store.get_vendor(vendor_id)
        amount = _parse_amount(amount)
        if amount <= 0:
            raise InvalidInput('Payout amount must be greater than zero',
                               details={'amount': str(amount)})

        with self.store.vendor_lock(vendor_id):
            if self.store.active_subscription(vendor_id) is None:
                raise NoActiveSubscription(vendor_id)

            available = self.get_available_balance(vendor_id)
            if amount > available:
                raise InsufficientBalance(available, amount)

            minimum = self.minimum_payout(vendor_id)
            if amount < minimum:
                raise BelowMinimumPayout(minimum, amount)

            payout = self._create_payout(vendor_id, amount, notes, {
                'type': 'MANUAL',
                'requestedBy': actor_id,
                'availableBalanceAtRequest': str(available),
            })
            linked = self._allocate(vendor_id, payout, amount)
            self.store.audit(actor_id, 'REQUEST_MANUAL_PAYOUT', 'PAYOUT', payout.id, {
                'vendor_id': vendor_id,
                'amount': str(amount),
                'commission_count': len(linked),
                'notes': notes,
            })

        logger.info('Payout %s of %s requested for vendor %s (%d commissions linked)',
                    payout.id, amount, vendor_id, len(linked))
        return payout

    def _create_payout(self, vendor_id, amount, notes, metadata):
        settings = self.store.payout_settings(vendor_id)
        metadata['payoutMethod'] = settings.payout_method if settings else PayoutMethod.STRIPE
        payout = self.store.add(Payout(
            vendor_id=vendor_id,
            amount=amount,
            status=PayoutStatus.PENDING,
            scheduled_date=utcnow(),
            notes=notes,
            retry_count=0,
            payout_metadata=metadata,
        ))
        self.store.flush()
        return payout

    def _allocate(self, vendor_id, payout, amount):
        """Link unassigned commissions oldest-first until their net covers amount."""
        linked = []
        covered = ZERO
        for commission in self.store.unassigned_commissions(vendor_id):
            if covered >= amount:
                break
            commission.payout_id = payout.id
            covered += vendor_net(commission)
            linked.append(commission)
        return linked

    # ===== Processing =====

    def process_payout(self, payout_id):
        """Execute the payout through its gateway; returns the payment reference."""
        payout = self.store.get_or_fail(Payout, payout_id, 'Payout')
        if payout.status not in (PayoutStatus.PENDING, PayoutStatus.PROCESSING):
            raise InvalidState(f'Payout cannot be processed in status {payout.status}',
                               details={'payout_id': payout.id})

        settings = self.store.payout_settings(payout.vendor_id)
        method = settings.payout_method if settings else PayoutMethod.STRIPE
        gateway = self.gateways.get(method)
        if gateway is None:
            raise PayoutProcessingError(f'Unsupported payout method: {method}')

        subscription = self.store.active_subscription(payout.vendor_id)
        return gateway.execute(payout, subscription)

    def submit_payout(self, payout_id, actor_id='SYSTEM'):
        """Process a PENDING payout and record the outcome on it.

        The payout is claimed (committed as PROCESSING) before the gateway is
        called, so a second submit cannot pay it again and a gateway webhook
        arriving mid-call finds it completable. A gateway failure leaves the
        payout FAILED with its reason stored and its commissions released; it
        is not raised to the caller.
        """
        payout = self._claim(payout_id)

        try:
            reference = self.process_payout(payout.id)
        except PayoutProcessingError as e:
            with self.store.atomic():
                payout = self.store.lock_payout(payout.id)
                if payout.status != PayoutStatus.PROCESSING:
                    logger.warning('Payout %s failed at the gateway but is already %s',
                                   payout.id, payout.status)
                    return payout
                unlinked = self._fail(payout, e.message, count_attempt=True)
                self.store.audit(actor_id, 'PAYOUT_FAILED', 'PAYOUT', payout.id, {
                    'reason': e.message,
                    'retry_count': payout.retry_count,
                    'commissions_unlinked': unlinked,
                })
            logger.warning('Payout %s failed: %s', payout.id, e.message)
            self._notify('payout_failed', payout)
            return payout

        with self.store.atomic():
            payout = self.store.lock_payout(payout.id)
            # A webhook may already have completed it with the gateway's own reference
            if not payout.payment_reference:
                payout.payment_reference = reference
            self.store.audit(actor_id, 'PROCESS_PAYOUT', 'PAYOUT', payout.id, {
                'payment_reference': reference,
                'amount': str(payout.amount),
                'status': payout.status,
            })
        logger.info('Payout %s submitted (%s)', payout.id, reference)
        self._notify('payout_processed', payout)
        return payout

    def _claim(self, payout_id):
        payout = self.store.get_or_fail(Payout, payout_id, 'Payout')
        with self.store.vendor_lock(payout.vendor_id):
            payout = self.store.lock_payout(payout_id)
            if payout.status != PayoutStatus.PENDING:
                raise InvalidState(f'Only pending payouts can be processed, got {payout.status}',
                                   details={'payout_id': payout.id})
            payout.status = PayoutStatus.PROCESSING
            payout.processed_at = utcnow()
        return payout

    def complete_payout(self, payout_id, payment_reference=None, actor_id='SYSTEM'):
        payout = self.store.get_or_fail(Payout, payout_id, 'Payout')
        if payout.status == PayoutStatus.COMPLETED:
            return payout
        if payout.status != PayoutStatus.PROCESSING:
            raise InvalidState(f'Payout cannot be completed from {payout.status}',
                               details={'payout_id': payout.id})

        with self.store.atomic():
            paid = self._complete(payout, payment_reference)
            self.store.audit(actor_id, 'COMPLETE_PAYOUT', 'PAYOUT', payout.id, {
                'payment_reference': payout.payment_reference,
                'commissions_paid': paid,
            })
        return payout

    def fail_payout(self, payout_id, reason, actor_id='SYSTEM'):
        payout = self.store.get_or_fail(Payout, payout_id, 'Payout')
        if payout.status == PayoutStatus.FAILED:
            return payout
        if PayoutStatus.FAILED not in PayoutStatus.TRANSITIONS[payout.status]:
            raise InvalidState(f'Payout cannot fail from {payout.status}',
                               details={'payout_id': payout.id})

        with self.store.atomic():
            unlinked = self._fail(payout, reason)
            self.store.audit(actor_id, 'FAIL_PAYOUT', 'PAYOUT', payout.id, {
                'reason': reason,
                'commissions_unlinked': unlinked,
            })
        self._notify('payout_failed', payout)
        return payout

    def _complete(self, payout, payment_reference):
        now = utcnow()
        payout.status = PayoutStatus.COMPLETED
        payout.processed_at = payout.processed_at or now
        if payment_reference:
            payout.payment_reference = payment_reference

        paid = 0
        for commission in self.store.commissions_for_payout(payout.id):
            if commission.status in CommissionStatus.PAYABLE:
                commission.status = CommissionStatus.PAID
                commission.paid_at = now
                paid += 1

        settings = self.store.payout_settings(payout.vendor_id)
        if settings is not None:
            settings.last_payout_date = now
            settings.next_payout_date = next_payout_date(now, settings.payout_frequency)
        return paid

    def _fail(self, payout, reason, count_attempt=False):
        payout.status = PayoutStatus.FAILED
        payout.failure_reason = reason
        if count_attempt:
            payout.retry_count = (payout.retry_count or 0) + 1
        return self.store.unlink_commissions(payout.id)

    def _notify(self, event, payout):
        if self.notifier is None:
            return
        try:
            getattr(self.notifier, event)(payout)
        except Exception:
            logger.exception('Notification %s for payout %s failed', event, payout.id)

    # ===== Admin =====

    def update_payout(self, payout_id, status=None, notes=None, actor_id=None):
        payout = self.store.get_or_fail(Payout, payout_id, 'Payout')
        previous = payout.status

        if status is not None and status not in PayoutStatus.TRANSITIONS:
            raise InvalidInput(f'Unknown payout status: {status}')
        if status is not None and status != previous \
                and status not in PayoutStatus.TRANSITIONS[previous]:
            raise InvalidState(f'Payout cannot move from {previous} to {status}',
                               details={'payout_id': payout.id})

        with self.store.atomic():
            if notes is not None:
                payout.notes = notes
            if status == PayoutStatus.PROCESSING and previous != status:
                payout.status = status
                payout.processed_at = utcnow()
            elif status == PayoutStatus.COMPLETED and previous != status:
                self._complete(payout, None)
            elif status == PayoutStatus.FAILED and previous != status:
                self._fail(payout, notes or 'Marked as failed by administrator')

            self.store.audit(actor_id, 'UPDATE_PAYOUT', 'PAYOUT', payout.id, {
                'from': previous,
                'to': payout.status,
                'notes': notes,
            })
        return payout

    def delete_payout(self, payout_id, actor_id=None):
        payout = self.store.get_or_fail(Payout, payout_id, 'Payout')
        if payout.status in PayoutStatus.UNDELETABLE:
            raise InvalidState(f'Cannot delete a {payout.status.lower()} payout',
                               details={'payout_id': payout.id, 'status': payout.status})

        with self.store.vendor_lock(payout.vendor_id):
            unlinked = self.store.unlink_commissions(payout.id)
            self.store.audit(actor_id, 'DELETE_PAYOUT', 'PAYOUT', payout.id, {
                'vendor_id': payout.vendor_id,
                'amount': str(payout.amount),
                'status': payout.status,
                'commissions_unlinked': unlinked,
            })
            self.store.delete(payout)
        logger.info('Payout %s deleted, %d commissions released', payout_id, unlinked)

    # ===== Scheduled settlement =====

    def calculate_pending_payout(self, vendor_id):
        """What a scheduled payout for this vendor would pay right now."""
        unassigned = self.store.unassigned_commissions(vendor_id)
        unassigned_total = sum((vendor_net(c) for c in unassigned), ZERO)
        available = self.get_available_balance(vendor_id)
        amount = max(min(unassigned_total, available), ZERO)
        minimum = self.minimum_payout(vendor_id)
        return {
            'vendor_id': vendor_id,
            'commission_count': len(unassigned),
            'unassigned_total': unassigned_total,
            'available_balance': available,
            'payout_amount': amount,
            'minimum_payout': minimum,
            'eligible': amount > 0 and amount >= minimum,
        }

    def run_scheduled_payouts(self, now=None, actor_id='SYSTEM'):
        now = now or utcnow()
        result = {'processed': 0, 'failed': 0, 'skipped': 0}

        for settings in self.store.due_payout_settings(now):
            vendor_id = settings.vendor_id
            try:
                payout = self._create_scheduled_payout(vendor_id, now, actor_id)
            except MarketplaceError as e:
                logger.info('Scheduled payout skipped for vendor %s: %s', vendor_id, e.message)
                payout = None

            with self.store.atomic():
                settings.next_payout_date = next_payout_date(now, settings.payout_frequency)

            if payout is None:
                result['skipped'] += 1
                continue

            payout = self.submit_payout(payout.id, actor_id)
            if payout.status == PayoutStatus.FAILED:
                result['failed'] += 1
            else:
                result['processed'] += 1

        logger.info('Scheduled payouts: %s', result)
        return result

    def _create_scheduled_payout(self, vendor_id, now, actor_id):
        with self.store.vendor_lock(vendor_id):
            if self.store.active_subscription(vendor_id, now=now) is None:
                raise NoActiveSubscription(vendor_id)

            pending = self.calculate_pending_payout(vendor_id)
            if not pending['eligible']:
                return None

            amount = pending['payout_amount']
            payout = self._create_payout(vendor_id, amount, 'Scheduled payout', {
                'type': 'SCHEDULED',
                'requestedBy': actor_id,
            })
            linked = self._allocate(vendor_id, payout, amount)
            self.store.audit(actor_id, 'SCHEDULE_PAYOUT', 'PAYOUT', payout.id, {
                'vendor_id': vendor_id,
                'amount': str(amount),
                'commission_count': len(linked),
            })
        return payout

    # ===== Settings =====

    def get_payout_settings(self, vendor_id, actor_id='SYSTEM'):
        self.store.get_vendor(vendor_id)
        settings = self.store.payout_settings(vendor_id)
        if settings is not None:
            return settings

        with self.store.atomic():
            settings = self.store.add(VendorPayoutSettings(
                vendor_id=vendor_id,
                minimum_payout=self.default_minimum,
                payout_frequency=PayoutFrequency.WEEKLY,
                payout_method=PayoutMethod.STRIPE,
                is_active=True,
                next_payout_date=next_payout_date(utcnow(), PayoutFrequency.WEEKLY),
            ))
            self.store.flush()
            self.store.audit(actor_id, 'CREATE_PAYOUT_SETTINGS', 'PAYOUT_SETTINGS', settings.id, {
                'vendor_id': vendor_id,
            })
        return settings

    def update_payout_settings(self, vendor_id, minimum_payout=None, payout_frequency=None,
                               payout_method=None, is_active=None, actor_id=None):
        changes = {}
        if minimum_payout is not None:
            minimum = _parse_amount(minimum_payout)
            if minimum < MINIMUM_PAYOUT_FLOOR or minimum > MINIMUM_PAYOUT_CEILING:
                raise InvalidInput(
                    f'Minimum payout must be between ${MINIMUM_PAYOUT_FLOOR} and ${MINIMUM_PAYOUT_CEILING}',
                    details={'minimum_payout': str(minimum_payout)}
                )
            changes['minimum_payout'] = minimum
        if payout_frequency is not None:
            if payout_frequency not in PayoutFrequency.ALL:
                raise InvalidInput(f'Invalid payout frequency: {payout_frequency}')
            changes['payout_frequency'] = payout_frequency
        if payout_method is not None:
            if payout_method not in PayoutMethod.ALL:
                raise InvalidInput(f'Invalid payout method: {payout_method}')
            changes['payout_method'] = payout_method
        if is_active is not None:
            changes['is_active'] = bool(is_active)

        settings = self.get_payout_settings(vendor_id, actor_id=actor_id)
        with self.store.atomic():
            for field, value in changes.items():
                setattr(settings, field, value)
            if 'payout_frequency' in changes:
                anchor = settings.last_payout_date or utcnow()
                settings.next_payout_date = next_payout_date(anchor, settings.payout_frequency)
            self.store.audit(actor_id, 'UPDATE_PAYOUT_SETTINGS', 'PAYOUT_SETTINGS', settings.id, {
                'vendor_id': vendor_id,
                'changes': {k: str(v) for k, v in changes.items()},
            })
        return settings
