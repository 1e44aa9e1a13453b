"""
Tests for commission calculation and commission status changes.
"""
from decimal import Decimal

import pytest

from marketplace import db
from marketplace.errors import InvalidInput, InvalidState, NotFound
from marketplace.models import AuditLog, Commission, Subscription
from marketplace.models.commission import CommissionStatus
from marketplace.models.subscription import SubscriptionTier
from marketplace.services.commission_engine import (
    RATE_DEFAULT, RATE_FROM_SUBSCRIPTION, TOTAL_FROM_ORDER, TOTAL_FROM_SNAPSHOT,
    rate_for_tier, resolve_order_total
)


@pytest.mark.unit
@pytest.mark.parametrize('tier, rate, source', [
    (SubscriptionTier.BASIC, Decimal('0.20'), RATE_FROM_SUBSCRIPTION),
    (SubscriptionTier.PRO, Decimal('0.15'), RATE_FROM_SUBSCRIPTION),
    (SubscriptionTier.PREMIUM, Decimal('0.15'), RATE_FROM_SUBSCRIPTION),
    (SubscriptionTier.ENTERPRISE, Decimal('0.10'), RATE_FROM_SUBSCRIPTION),
    (SubscriptionTier.STARTER, Decimal('0.15'), RATE_DEFAULT),
    (None, Decimal('0.15'), RATE_DEFAULT),
])
def test_rate_table(tier, rate, source):
    assert rate_for_tier(tier, Decimal('0.15')) == (rate, source)


@pytest.mark.unit
def test_pro_vendor_pays_fifteen_percent(services, make_vendor):
    vendor = make_vendor(tier=SubscriptionTier.PRO)

    result = services.commissions.calculate_commission('order-1', vendor.id, 1000)

    assert result['commission_amount'] == Decimal('150.00')
    assert result['net_payout'] == Decimal('850.00')
    assert result['rate'] == Decimal('0.15')
    assert result['tier'] == SubscriptionTier.PRO


@pytest.mark.unit
def test_vendor_without_subscription_uses_default_rate(services, make_vendor):
    vendor = make_vendor()

    result = services.commissions.calculate_commission('order-1', vendor.id, 1000)

    assert result['commission_amount'] == Decimal('150.00')
    assert result['net_payout'] == Decimal('850.00')
    assert result['rate_source'] == RATE_DEFAULT
    assert result['tier'] is None


@pytest.mark.unit
@pytest.mark.parametrize('total', ['0.01', '0.05', '19.99', '333.33', '1234.57', '99999.99'])
def test_commission_and_net_add_up_to_total(services, make_vendor, total):
    vendor = make_vendor(tier=SubscriptionTier.BASIC)

    result = services.commissions.calculate_commission(None, vendor.id, total)

    assert result['commission_amount'] + result['net_payout'] == Decimal(total)
    assert result['commission_amount'] == result['commission_amount'].quantize(Decimal('0.01'))


@pytest.mark.unit
def test_half_cent_rounds_up(services, make_vendor):
    vendor = make_vendor(tier=SubscriptionTier.ENTERPRISE)

    result = services.commissions.calculate_commission(None, vendor.id, '0.05')

    assert result['commission_amount'] == Decimal('0.01')
    assert result['net_payout'] == Decimal('0.04')


@pytest.mark.unit
@pytest.mark.parametrize('total', [0, -10, '-0.01'])
def test_non_positive_total_is_rejected(services, make_vendor, total):
    vendor = make_vendor()
    with pytest.raises(InvalidInput):
        services.commissions.calculate_commission(None, vendor.id, total)


@pytest.mark.unit
def test_unknown_vendor_is_rejected(services):
    with pytest.raises(NotFound):
        services.commissions.calculate_commission(None, 'missing-vendor', 100)


@pytest.mark.unit
def test_record_commission_snapshots_rate(services, make_vendor, make_product, customer):
    vendor = make_vendor(tier=SubscriptionTier.BASIC)
    product = make_product(vendor, Decimal('100.00'))
    order = services.orders.create_order(customer.id, vendor.id, [{'product_id': product.id, 'quantity': 2}])
    commission = order.commission

    assert commission.status == CommissionStatus.CALCULATED
    assert commission.amount == Decimal('40.00')
    assert commission.breakdown['orderTotal'] == '200.00'
    assert commission.breakdown['rate'] == '0.20'
    assert commission.breakdown['tier'] == SubscriptionTier.BASIC
    assert commission.breakdown['netPayout'] == '160.00'

    # Upgrading the vendor later does not touch the stored commission
    subscription = Subscription.query.filter_by(vendor_id=vendor.id).one()
    subscription.tier = SubscriptionTier.ENTERPRISE
    db.session.commit()

    stored = db.session.get(Commission, commission.id)
    assert stored.amount == Decimal('40.00')
    assert stored.rate == Decimal('0.20')


@pytest.mark.unit
def test_record_commission_is_idempotent(services, make_vendor, make_product, customer):
    vendor = make_vendor(tier=SubscriptionTier.PRO)
    product = make_product(vendor, Decimal('10.00'))
    order = services.orders.create_order(customer.id, vendor.id, [{'product_id': product.id, 'quantity': 1}])

    again = services.commissions.record_commission(order)

    assert again.id == order.commission.id
    assert Commission.query.filter_by(order_id=order.id).count() == 1


@pytest.mark.unit
def test_resolve_order_total_prefers_snapshot(make_vendor, make_commission):
    vendor = make_vendor()
    commission = make_commission(vendor, '100.00')
    commission.order.total_price = Decimal('80.00')
    db.session.commit()

    assert resolve_order_total(commission) == (Decimal('100.00'), TOTAL_FROM_SNAPSHOT)


@pytest.mark.unit
def test_resolve_order_total_falls_back_to_order(make_vendor, make_commission):
    vendor = make_vendor()
    commission = make_commission(vendor, '100.00', snapshot=False)

    assert resolve_order_total(commission) == (Decimal('100.00'), TOTAL_FROM_ORDER)


@pytest.mark.unit
def test_transition_to_same_status_is_a_noop(services, make_vendor, make_commission):
    vendor = make_vendor()
    commission = make_commission(vendor, '100.00')
    audits_before = AuditLog.query.count()

    services.commissions.transition_commission(commission.id, CommissionStatus.CALCULATED)

    assert AuditLog.query.count() == audits_before


@pytest.mark.unit
def test_pending_commission_moves_through_lifecycle(services, make_vendor, make_commission):
    vendor = make_vendor()
    commission = make_commission(vendor, '100.00', status=CommissionStatus.PENDING)

    services.commissions.transition_commission(commission.id, CommissionStatus.CALCULATED)
    assert commission.calculated_at is not None

    services.commissions.transition_commission(commission.id, CommissionStatus.PAID, actor_id='admin')
    assert commission.status == CommissionStatus.PAID
    assert commission.paid_at is not None

    audits = AuditLog.query.filter_by(resource_id=commission.id, action='UPDATE_COMMISSION_STATUS').all()
    assert sorted(a.details['to'] for a in audits) == [CommissionStatus.CALCULATED, CommissionStatus.PAID]
    assert {a.actor_id for a in audits} == {'SYSTEM', 'admin'}


@pytest.mark.unit
@pytest.mark.parametrize('terminal', [CommissionStatus.PAID, CommissionStatus.CANCELLED])
def test_terminal_commissions_do_not_move(services, make_vendor, make_commission, terminal):
    vendor = make_vendor()
    commission = make_commission(vendor, '100.00', status=terminal)

    with pytest.raises(InvalidState):
        services.commissions.transition_commission(commission.id, CommissionStatus.CALCULATED)


@pytest.mark.unit
def test_commission_in_a_payout_cannot_be_cancelled(services, make_vendor, make_commission):
    vendor = make_vendor(tier=SubscriptionTier.PRO)
    commission = make_commission(vendor, '100.00')
    services.payouts.request_payout(vendor.id, '85.00')

    with pytest.raises(InvalidState):
        services.commissions.transition_commission(commission.id, CommissionStatus.CANCELLED)


@pytest.mark.unit
def test_unknown_commission_status_is_rejected(services, make_vendor, make_commission):
    vendor = make_vendor()
    commission = make_commission(vendor, '100.00')

    with pytest.raises(InvalidInput):
        services.commissions.transition_commission(commission.id, 'REFUNDED')
