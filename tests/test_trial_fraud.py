"""
Tests for trial fraud scoring and the trial lifecycle.
"""
import itertools
from datetime import timedelta
from decimal import Decimal

import pytest

from marketplace import db
from marketplace.errors import InvalidState, NotFound, TrialNotAllowed
from marketplace.models import Subscription, TrialUsage
from marketplace.models.subscription import SubscriptionStatus, SubscriptionTier
from marketplace.models.trial import TrialStatus
from marketplace.models.user import Role
from marketplace.services.trial_fraud import (
    RISK_HIGH, RISK_LOW, RISK_MEDIUM, FraudCheckResult, FraudPolicy, FraudSignals,
    TrialSignup, classify, is_suspicious_email, score_signup
)
from marketplace.utils.clock import utcnow

POLICY = FraudPolicy()


def _signup(**overrides):
    data = {
        'user_id': 'user-1',
        'plan_id': 'plan-1',
        'email': 'alice@shop.io',
        'ip_address': '10.0.0.1',
    }
    data.update(overrides)
    return TrialSignup(**data)


def _history(email='someone@shop.io', ip='192.168.0.9', age=timedelta(days=1), **extra):
    now = utcnow()
    usage = TrialUsage(
        user_id=extra.pop('user_id', 'other-user'),
        plan_id=extra.pop('plan_id', 'other-plan'),
        email=email,
        ip_address=ip,
        trial_start_date=now - age,
        trial_end_date=now - age + timedelta(days=14),
        created_at=now - age,
        **extra
    )
    db.session.add(usage)
    db.session.commit()
    return usage


# ----- Pure scoring -----

@pytest.mark.unit
@pytest.mark.parametrize('email, expected', [
    ('user@mailinator.com', True),
    ('abc123@10minutemail.net', True),
    ('test42@gmail.com', True),
    ('FAKE1@gmail.com', True),
    ('Temp7@x.io', True),
    ('bob@example.org', True),
    ('carol@fake.net', True),
    ('alice@gmail.com', False),
    ('tester@gmail.com', False),
    ('bob@example.io', False),
])
def test_suspicious_email_patterns(email, expected):
    assert is_suspicious_email(email) is expected


@pytest.mark.unit
@pytest.mark.parametrize('score, risk, allowed', [
    (0, RISK_LOW, True),
    (19, RISK_LOW, True),
    (20, RISK_MEDIUM, True),
    (39, RISK_MEDIUM, True),
    (40, RISK_MEDIUM, False),
    (69, RISK_MEDIUM, False),
    (70, RISK_HIGH, False),
    (100, RISK_HIGH, False),
])
def test_risk_thresholds(score, risk, allowed):
    assert classify(score, POLICY) == (risk, allowed)


@pytest.mark.unit
def test_clean_signup_scores_zero():
    result = score_signup(_signup(), FraudSignals(plan_tier=SubscriptionTier.BASIC), POLICY)
    assert result == FraudCheckResult(is_allowed=True, fraud_score=0, risk_level=RISK_LOW, reasons=[])


@pytest.mark.unit
def test_every_signal_fires_and_score_is_capped():
    signals = FraudSignals(
        prior_matches=1, ip_trials=3, domain_trials=5,
        account_age=timedelta(minutes=5), plan_tier=SubscriptionTier.PRO,
    )
    result = score_signup(_signup(email='test1@example.com'), signals, POLICY)

    assert result.fraud_score == 100
    assert result.risk_level == RISK_HIGH
    assert len(result.reasons) == 6
    assert result.reasons[0] == 'Previous trial usage detected'


SIGNAL_TOGGLES = {
    'prior': lambda s, sig: setattr(sig, 'prior_matches', 1),
    'ip': lambda s, sig: setattr(sig, 'ip_trials', 3),
    'domain': lambda s, sig: setattr(sig, 'domain_trials', 5),
    'email': lambda s, sig: setattr(s, 'email', 'fake9@temp.com'),
    'card': lambda s, sig: setattr(sig, 'plan_tier', SubscriptionTier.PREMIUM),
    'age': lambda s, sig: setattr(sig, 'account_age', timedelta(minutes=1)),
}


def _score(active):
    signup = _signup()
    signals = FraudSignals(account_age=timedelta(days=10), plan_tier=SubscriptionTier.BASIC)
    for name in active:
        SIGNAL_TOGGLES[name](signup, signals)
    return score_signup(signup, signals, POLICY).fraud_score


@pytest.mark.unit
def test_adding_a_signal_never_lowers_the_score():
    names = list(SIGNAL_TOGGLES)
    for size in range(len(names) + 1):
        for base in itertools.combinations(names, size):
            base_score = _score(base)
            for extra in set(names) - set(base):
                assert _score(base + (extra,)) >= base_score


# ----- Eligibility against history -----

@pytest.fixture
def pro_plan(make_plan):
    return make_plan(SubscriptionTier.PRO, trial_days=14)


@pytest.fixture
def basic_plan(make_plan):
    return make_plan(SubscriptionTier.BASIC, price=Decimal('20.00'), trial_days=7)


@pytest.mark.unit
def test_disposable_email_without_card_on_pro_plan_is_denied(services, make_vendor, pro_plan):
    vendor = make_vendor(email='fake123@example.com')
    signup = _signup(user_id=vendor.user_id, plan_id=pro_plan.id, email='fake123@example.com')

    result = services.trials.check_trial_eligibility(signup)

    assert result.fraud_score >= 60
    assert result.risk_level in (RISK_MEDIUM, RISK_HIGH)
    assert result.is_allowed is False
    assert 'Suspicious email pattern detected' in result.reasons


@pytest.mark.unit
def test_fresh_clean_account_on_basic_plan_is_allowed(services, make_vendor, basic_plan):
    vendor = make_vendor(email='alice@shop.io', user_age=timedelta(minutes=10))
    signup = _signup(user_id=vendor.user_id, plan_id=basic_plan.id, email='alice@shop.io')

    result = services.trials.check_trial_eligibility(signup)

    assert result.fraud_score == 15
    assert result.risk_level == RISK_LOW
    assert result.is_allowed is True
    assert result.reasons == ['Very recent account creation']


@pytest.mark.unit
def test_prior_trial_matches_on_card(services, basic_plan):
    _history(payment_card_last4='4242')

    signals = services.trials.gather_signals(_signup(plan_id=basic_plan.id, payment_card_last4='4242'))

    assert signals.prior_matches == 1


@pytest.mark.unit
def test_ip_window_only_counts_recent_trials(services, basic_plan):
    for _ in range(3):
        _history(ip='10.0.0.1', age=timedelta(days=40))

    signals = services.trials.gather_signals(_signup(plan_id=basic_plan.id))

    assert signals.ip_trials == 0
    assert signals.prior_matches == 3

    for _ in range(3):
        _history(ip='10.0.0.1', age=timedelta(days=2))
    assert services.trials.gather_signals(_signup(plan_id=basic_plan.id)).ip_trials == 3


@pytest.mark.unit
def test_domain_trials_are_counted(services, basic_plan):
    for i in range(5):
        _history(email=f'staff{i}@corp.io', ip=f'172.16.0.{i}')

    signals = services.trials.gather_signals(_signup(plan_id=basic_plan.id, email='new@corp.io'))

    assert signals.domain_trials == 5
    assert signals.prior_matches == 0


# ----- Recording and starting trials -----

@pytest.mark.unit
def test_record_trial_usage(services, make_vendor, basic_plan):
    vendor = make_vendor()
    result = FraudCheckResult(is_allowed=True, fraud_score=35, risk_level=RISK_MEDIUM,
                              reasons=['Suspicious email pattern detected', 'Very recent account creation'])
    signup = _signup(user_id=vendor.user_id, plan_id=basic_plan.id, user_agent='pytest')

    usage = services.trials.record_trial_usage(signup, result)

    assert usage.status == TrialStatus.ACTIVE
    assert usage.fraud_score == 35
    assert usage.is_fraudulent is False
    assert usage.notes == 'Suspicious email pattern detected; Very recent account creation'
    assert usage.trial_end_date - usage.trial_start_date == timedelta(days=7)


@pytest.mark.unit
def test_high_risk_usage_is_flagged(services, make_vendor, basic_plan):
    vendor = make_vendor()
    result = FraudCheckResult(is_allowed=False, fraud_score=80, risk_level=RISK_HIGH, reasons=['x'])

    usage = services.trials.record_trial_usage(_signup(user_id=vendor.user_id, plan_id=basic_plan.id), result)

    assert usage.is_fraudulent is True


@pytest.mark.unit
def test_record_needs_a_trial_plan(services, make_plan):
    plan = make_plan(SubscriptionTier.ENTERPRISE, trial_days=0)
    result = FraudCheckResult(is_allowed=True, fraud_score=0, risk_level=RISK_LOW)

    with pytest.raises(InvalidState):
        services.trials.record_trial_usage(_signup(plan_id=plan.id), result)
    with pytest.raises(NotFound):
        services.trials.record_trial_usage(_signup(plan_id='missing'), result)


@pytest.mark.unit
def test_start_trial_opens_free_subscription(services, make_vendor, basic_plan):
    vendor = make_vendor(tier=SubscriptionTier.STARTER)
    signup = _signup(user_id=vendor.user_id, plan_id=basic_plan.id)

    started = services.trials.start_trial(signup)

    subscription = started['subscription']
    assert subscription.price == Decimal('0.00')
    assert subscription.tier == SubscriptionTier.BASIC
    assert subscription.trial_end_date == started['trial'].trial_end_date
    active = Subscription.query.filter_by(vendor_id=vendor.id, status=SubscriptionStatus.ACTIVE).all()
    assert [s.id for s in active] == [subscription.id]
    assert services.store.active_subscription(vendor.id).tier == SubscriptionTier.BASIC


@pytest.mark.unit
def test_second_trial_is_denied_and_not_recorded(services, make_vendor, basic_plan):
    vendor = make_vendor()
    signup = _signup(user_id=vendor.user_id, plan_id=basic_plan.id)
    services.trials.start_trial(signup)

    with pytest.raises(TrialNotAllowed) as exc:
        services.trials.start_trial(signup)

    assert exc.value.http_status == 403
    assert exc.value.details['fraudScore'] >= 50
    assert 'Previous trial usage detected' in exc.value.details['reasons']
    assert TrialUsage.query.count() == 1


@pytest.mark.unit
def test_start_trial_requires_vendor_and_trial_plan(services, make_user, make_vendor, make_plan, basic_plan):
    customer = make_user(role=Role.CUSTOMER)
    with pytest.raises(InvalidState):
        services.trials.start_trial(_signup(user_id=customer.id, plan_id=basic_plan.id))

    no_trial = make_plan(SubscriptionTier.ENTERPRISE, trial_days=0)
    vendor = make_vendor()
    with pytest.raises(InvalidState):
        services.trials.start_trial(_signup(user_id=vendor.user_id, plan_id=no_trial.id))


# ----- Lifecycle -----

@pytest.fixture
def running_trial(services, make_vendor, basic_plan):
    vendor = make_vendor()
    started = services.trials.start_trial(_signup(user_id=vendor.user_id, plan_id=basic_plan.id))
    return started['trial'], started['subscription']


@pytest.mark.unit
def test_expire_trials(services, running_trial):
    usage, subscription = running_trial

    assert services.trials.expire_trials(now=utcnow()) == 0
    assert services.trials.expire_trials(now=usage.trial_end_date + timedelta(minutes=1)) == 1

    assert usage.status == TrialStatus.EXPIRED
    assert subscription.status == SubscriptionStatus.INACTIVE


@pytest.mark.unit
def test_convert_trial(services, running_trial, basic_plan):
    usage, subscription = running_trial

    services.trials.convert_trial(usage.id, actor_id='ops')

    assert usage.status == TrialStatus.CONVERTED
    assert subscription.price == Decimal('20.00')
    assert subscription.end_date is None
    with pytest.raises(InvalidState):
        services.trials.convert_trial(usage.id)


@pytest.mark.unit
def test_cancel_trial(services, running_trial):
    usage, subscription = running_trial

    services.trials.cancel_trial(usage.id)

    assert usage.status == TrialStatus.CANCELLED
    assert subscription.status == SubscriptionStatus.CANCELLED
