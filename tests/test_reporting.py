"""
Tests for reporting roll-ups.
"""
from datetime import timedelta
from decimal import Decimal

import pytest

from marketplace import db
from marketplace.models import TrialUsage
from marketplace.models.commission import CommissionStatus
from marketplace.models.subscription import BillingCycle, SubscriptionTier
from marketplace.models.trial import TrialStatus
from marketplace.utils.clock import utcnow


def _trial(status=TrialStatus.ACTIVE, is_fraudulent=False, n=0):
    now = utcnow()
    db.session.add(TrialUsage(
        user_id=f'user-{n}',
        plan_id='plan-1',
        email=f'owner{n}@shop.io',
        ip_address=f'10.1.0.{n}',
        trial_start_date=now,
        trial_end_date=now + timedelta(days=14),
        status=status,
        is_fraudulent=is_fraudulent,
    ))
    db.session.commit()


@pytest.mark.unit
def test_trial_stats_on_empty_history(services):
    stats = services.reporting.trial_stats()

    assert stats['total_trials'] == 0
    assert stats['conversion_rate'] == 0.0
    assert stats['fraud_rate'] == 0.0


@pytest.mark.unit
def test_trial_stats_rates(services):
    _trial(n=1)
    _trial(TrialStatus.CONVERTED, n=2)
    _trial(TrialStatus.EXPIRED, is_fraudulent=True, n=3)

    stats = services.reporting.trial_stats()

    assert stats['total_trials'] == 3
    assert stats['active_trials'] == 1
    assert stats['converted_trials'] == 1
    assert stats['fraudulent_trials'] == 1
    assert stats['conversion_rate'] == 33.33
    assert stats['fraud_rate'] == 33.33


@pytest.mark.unit
def test_recent_trials_filters_by_status(services):
    _trial(n=1)
    _trial(TrialStatus.CONVERTED, n=2)

    converted = services.reporting.recent_trials(status=TrialStatus.CONVERTED)

    assert [t.status for t in converted] == [TrialStatus.CONVERTED]
    assert len(services.reporting.recent_trials(limit=1)) == 1


@pytest.mark.unit
def test_finance_dashboard(services, make_vendor, make_commission):
    monthly = make_vendor(tier=SubscriptionTier.PRO, price=Decimal('50.00'))
    make_vendor(tier=SubscriptionTier.ENTERPRISE, price=Decimal('1200.00'),
                billing_cycle=BillingCycle.YEARLY)
    make_commission(monthly, '400.00')
    make_commission(monthly, '100.00', status=CommissionStatus.CANCELLED)
    services.payouts.request_payout(monthly.id, '60.00')

    dashboard = services.reporting.finance_dashboard()

    assert dashboard['monthly_recurring_revenue'] == Decimal('150.00')
    assert dashboard['active_subscriptions'] == 2
    assert dashboard['subscriptions_by_tier'] == {SubscriptionTier.PRO: 1, SubscriptionTier.ENTERPRISE: 1}
    assert dashboard['commission_revenue'] == Decimal('60.00')
    assert dashboard['pending_payout_total'] == Decimal('60.00')
    assert dashboard['pending_payout_count'] == 1


@pytest.mark.unit
def test_vendor_wallet(services, make_vendor, make_commission):
    vendor = make_vendor(tier=SubscriptionTier.PRO)
    make_commission(vendor, '200.00', created_at=utcnow() - timedelta(days=40))
    make_commission(vendor, '100.00')
    services.payouts.request_payout(vendor.id, '85.00')

    wallet = services.reporting.vendor_wallet(vendor.id)

    assert wallet['total_earnings'] == Decimal('255.00')
    assert wallet['available_balance'] == Decimal('170.00')
    assert wallet['pending_payouts'] == Decimal('85.00')
    assert wallet['total_paid_out'] == Decimal('0.00')
    assert wallet['last_30_days_earnings'] == Decimal('85.00')
    assert wallet['unassigned_commission_count'] == 1
    assert wallet['unassigned_commission_amount'] == Decimal('85.00')
    assert wallet['minimum_payout'] == Decimal('50.00')


@pytest.mark.unit
def test_commission_report_groups_by_vendor(services, make_vendor, make_commission):
    small = make_vendor()
    large = make_vendor()
    make_commission(small, '100.00')
    make_commission(large, '1000.00', rate=Decimal('0.10'))
    make_commission(large, '500.00', rate=Decimal('0.20'), status=CommissionStatus.PAID)
    make_commission(large, '999.00', status=CommissionStatus.CANCELLED)

    report = services.reporting.commission_report()

    assert report['total_sales'] == Decimal('1600.00')
    assert report['total_commission'] == Decimal('215.00')
    assert report['total_net_payout'] == Decimal('1385.00')
    assert report['commission_count'] == 3
    assert [row['vendor_id'] for row in report['vendors']] == [large.id, small.id]
    assert report['vendors'][0]['average_rate'] == Decimal('0.1500')
    assert report['vendors'][0]['by_status'] == {
        CommissionStatus.CALCULATED: 1,
        CommissionStatus.PAID: 1,
    }


@pytest.mark.unit
def test_commission_summary_respects_period(services, make_vendor, make_commission):
    vendor = make_vendor()
    now = utcnow()
    make_commission(vendor, '100.00', created_at=now - timedelta(days=60))
    make_commission(vendor, '300.00', created_at=now - timedelta(days=5))

    summary = services.reporting.commission_summary(vendor.id, start=now - timedelta(days=30), end=now)

    assert summary['total_sales'] == Decimal('300.00')
    assert summary['total_commission'] == Decimal('45.00')
    assert summary['commission_count'] == 1
