"""
Trial fraud scoring.

Each rule is a pure function ``(signup, signals, policy) -> (weight, reason)``
or ``None``. Signals are read from the store once, before any rule runs, so
rules never query anything themselves. The score is the sum of the weights
of the rules that fired, capped at ``policy.max_score``.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import timedelta

from marketplace.errors import InvalidInput, InvalidState, TrialNotAllowed
from marketplace.models import SubscriptionPlan, TrialUsage
from marketplace.models.subscription import SubscriptionStatus, SubscriptionTier
from marketplace.models.trial import TrialStatus
from marketplace.services.store import lookback
from marketplace.utils.clock import utcnow

logger = logging.getLogger(__name__)

RISK_LOW = 'LOW'
RISK_MEDIUM = 'MEDIUM'
RISK_HIGH = 'HIGH'

SUSPICIOUS_EMAIL_PATTERNS = tuple(re.compile(p, re.IGNORECASE) for p in (
    r'^[a-z0-9]+@(10minutemail|tempmail|guerrillamail|mailinator|throwaway)\.',
    r'^test\d+@',
    r'^fake\d+@',
    r'^temp\d+@',
    r'@(example|test|fake|temp)\.(com|org|net)$',
))


@dataclass
class TrialSignup:
    user_id: str
    plan_id: str
    email: str
    ip_address: str
    phone_number: str = None
    payment_card_last4: str = None
    user_agent: str = None
    stripe_customer_id: str = None


@dataclass
class FraudSignals:
    prior_matches: int = 0
    ip_trials: int = 0
    domain_trials: int = 0
    account_age: timedelta = None
    plan_tier: str = None


@dataclass
class FraudCheckResult:
    is_allowed: bool
    fraud_score: int
    risk_level: str
    reasons: list = field(default_factory=list)

    def to_dict(self):
        return {
            'isAllowed': self.is_allowed,
            'fraudScore': self.fraud_score,
            'riskLevel': self.risk_level,
            'reasons': list(self.reasons),
        }


@dataclass(frozen=True)
class FraudPolicy:
    previous_trial_weight: int = 50
    shared_ip_weight: int = 30
    shared_domain_weight: int = 25
    suspicious_email_weight: int = 20
    missing_card_weight: int = 40
    new_account_weight: int = 15

    max_trials_per_ip: int = 3
    max_trials_per_domain: int = 5
    new_account_age: timedelta = timedelta(hours=1)
    lookback_days: int = 30
    card_required_tiers: tuple = (SubscriptionTier.PRO, SubscriptionTier.PREMIUM)

    high_threshold: int = 70
    deny_threshold: int = 40
    flag_threshold: int = 20
    max_score: int = 100

    @classmethod
    def from_config(cls, config):
        return cls(
            max_trials_per_ip=config.get('FRAUD_MAX_TRIALS_PER_IP', 3),
            max_trials_per_domain=config.get('FRAUD_MAX_TRIALS_PER_DOMAIN', 5),
            lookback_days=config.get('TRIAL_LOOKBACK_DAYS', 30),
            high_threshold=config.get('FRAUD_HIGH_THRESHOLD', 70),
            deny_threshold=config.get('FRAUD_DENY_THRESHOLD', 40),
            flag_threshold=config.get('FRAUD_FLAG_THRESHOLD', 20),
        )


def is_suspicious_email(email):
    return any(pattern.search(email or '') for pattern in SUSPICIOUS_EMAIL_PATTERNS)


def email_domain(email):
    if not email or '@' not in email:
        return None
    return email.rsplit('@', 1)[1].lower()


# ===== Rules =====

def previous_trial(signup, signals, policy):
    if signals.prior_matches > 0:
        return policy.previous_trial_weight, 'Previous trial usage detected'


def shared_ip(signup, signals, policy):
    if signals.ip_trials >= policy.max_trials_per_ip:
        return policy.shared_ip_weight, 'Multiple trials from same IP address'


def shared_email_domain(signup, signals, policy):
    if signals.domain_trials >= policy.max_trials_per_domain:
        return policy.shared_domain_weight, 'Multiple trials from same email domain'


def suspicious_email(signup, signals, policy):
    if is_suspicious_email(signup.email):
        return policy.suspicious_email_weight, 'Suspicious email pattern detected'


def missing_payment_card(signup, signals, policy):
    if signals.plan_tier in policy.card_required_tiers and not signup.payment_card_last4:
        return policy.missing_card_weight, f'Payment card required for {signals.plan_tier} plan trial'


def new_account(signup, signals, policy):
    if signals.account_age is not None and signals.account_age < policy.new_account_age:
        return policy.new_account_weight, 'Very recent account creation'


RULES = (
    previous_trial,
    shared_ip,
    shared_email_domain,
    suspicious_email,
    missing_payment_card,
    new_account,
)


def classify(score, policy):
    """Map a score to (risk_level, is_allowed)."""
    if score >= policy.high_threshold:
        return RISK_HIGH, False
    if score >= policy.deny_threshold:
        return RISK_MEDIUM, False
    if score >= policy.flag_threshold:
        return RISK_MEDIUM, True
    return RISK_LOW, True


def score_signup(signup, signals, policy, rules=RULES):
    score = 0
    reasons = []
    for rule in rules:
        hit = rule(signup, signals, policy)
        if hit is None:
            continue
        weight, reason = hit
        score += weight
        reasons.append(reason)

    score = min(score, policy.max_score)
    risk_level, is_allowed = classify(score, policy)
    return FraudCheckResult(
        is_allowed=is_allowed,
        fraud_score=score,
        risk_level=risk_level,
        reasons=reasons,
    )


class TrialFraudScorer:

    def __init__(self, store, subscriptions, policy=None, rules=RULES):
        self.store = store
        self.subscriptions = subscriptions
        self.policy = policy or FraudPolicy()
        self.rules = rules

    def gather_signals(self, signup, now=None):
        now = now or utcnow()
        since = lookback(now, self.policy.lookback_days)

        domain = email_domain(signup.email)
        plan = self.store.get(SubscriptionPlan, signup.plan_id)
        user = self.store.get_user(signup.user_id)

        account_age = None
        if user is not None and user.created_at is not None:
            account_age = now - user.created_at

        return FraudSignals(
            prior_matches=self.store.prior_trial_count(
                signup.user_id, signup.email, signup.ip_address,
                phone_number=signup.phone_number,
                card_last4=signup.payment_card_last4,
            ),
            ip_trials=self.store.trials_from_ip(signup.ip_address, since),
            domain_trials=self.store.trials_from_domain(domain, since) if domain else 0,
            account_age=account_age,
            plan_tier=plan.tier if plan else None,
        )

    def check_trial_eligibility(self, signup, now=None):
        if not signup.email or not signup.ip_address:
            raise InvalidInput('Email and IP address are required for a trial signup')

        signals = self.gather_signals(signup, now=now)
        result = score_signup(signup, signals, self.policy, self.rules)
        logger.info('Trial check for user %s on plan %s: score=%s risk=%s allowed=%s',
                    signup.user_id, signup.plan_id, result.fraud_score,
                    result.risk_level, result.is_allowed)
        return result

    def record_trial_usage(self, signup, result, actor_id=None, now=None):
        plan = self.store.get_plan(signup.plan_id)
        if not plan.trial_days:
            raise InvalidState('Plan does not support trials', details={'plan_id': plan.id})

        start = now or utcnow()
        end = start + timedelta(days=plan.trial_days)

        with self.store.atomic():
            usage = self.store.add(TrialUsage(
                user_id=signup.user_id,
                plan_id=plan.id,
                email=signup.email,
                ip_address=signup.ip_address,
                phone_number=signup.phone_number,
                payment_card_last4=signup.payment_card_last4,
                user_agent=signup.user_agent,
                stripe_customer_id=signup.stripe_customer_id,
                trial_start_date=start,
                trial_end_date=end,
                fraud_score=result.fraud_score,
                is_fraudulent=result.risk_level == RISK_HIGH,
                status=TrialStatus.ACTIVE,
                notes='; '.join(result.reasons),
            ))
            self.store.flush()
            self.store.audit(actor_id or signup.user_id, 'RECORD_TRIAL_USAGE', 'TRIAL', usage.id, {
                'plan_id': plan.id,
                'fraud_score': result.fraud_score,
                'risk_level': result.risk_level,
            })
        return usage

    def start_trial(self, signup, actor_id=None, now=None):
        """Check a signup and, when admitted, record it and open the trial subscription."""
        plan = self.store.get_plan(signup.plan_id)
        if not plan.trial_days:
            raise InvalidState('This plan does not support trials', details={'plan_id': plan.id})

        vendor = self.store.vendor_for_user(signup.user_id)
        if vendor is None:
            raise InvalidState('Only vendor accounts can start a trial',
                               details={'user_id': signup.user_id})

        now = now or utcnow()
        result = self.check_trial_eligibility(signup, now=now)
        if not result.is_allowed:
            logger.warning('Trial denied for user %s: %s', signup.user_id, '; '.join(result.reasons))
            raise TrialNotAllowed(result)

        with self.store.atomic():
            usage = self.record_trial_usage(signup, result, actor_id=actor_id, now=now)
            subscription = self.subscriptions.activate(
                vendor.id, plan,
                price=0,
                start_date=now,
                end_date=usage.trial_end_date,
                trial_end_date=usage.trial_end_date,
                stripe_customer_id=signup.stripe_customer_id,
                actor_id=actor_id or signup.user_id,
            )

        return {
            'trial': usage,
            'subscription': subscription,
            'result': result,
        }

    # ===== Lifecycle =====

    def _active_trial(self, trial_id):
        usage = self.store.get_or_fail(TrialUsage, trial_id, 'Trial')
        if usage.status != TrialStatus.ACTIVE:
            raise InvalidState(f'Trial is {usage.status.lower()}', details={'trial_id': usage.id})
        return usage

    def _trial_subscription(self, usage):
        vendor = self.store.vendor_for_user(usage.user_id)
        if vendor is None:
            return None
        return self.subscriptions.trial_subscription(vendor.id, usage.plan_id)

    def convert_trial(self, trial_id, actor_id=None):
        usage = self._active_trial(trial_id)
        with self.store.atomic():
            usage.status = TrialStatus.CONVERTED
            subscription = self._trial_subscription(usage)
            if subscription is not None:
                self.subscriptions.convert_trial(subscription, usage.plan)
            self.store.audit(actor_id, 'CONVERT_TRIAL', 'TRIAL', usage.id, {
                'subscription_id': subscription.id if subscription else None,
            })
        return usage

    def cancel_trial(self, trial_id, actor_id=None):
        usage = self._active_trial(trial_id)
        with self.store.atomic():
            usage.status = TrialStatus.CANCELLED
            subscription = self._trial_subscription(usage)
            if subscription is not None:
                self.subscriptions.end_trial(subscription, SubscriptionStatus.CANCELLED)
            self.store.audit(actor_id, 'CANCEL_TRIAL', 'TRIAL', usage.id, {
                'subscription_id': subscription.id if subscription else None,
            })
        return usage

    def expire_trials(self, now=None, actor_id='SYSTEM'):
        """Expire ACTIVE trials whose end date has passed; returns how many."""
        now = now or utcnow()
        expired = 0
        for usage in self.store.expired_active_trials(now):
            with self.store.atomic():
                usage.status = TrialStatus.EXPIRED
                subscription = self._trial_subscription(usage)
                if subscription is not None:
                    self.subscriptions.end_trial(subscription, now=usage.trial_end_date)
                self.store.audit(actor_id, 'EXPIRE_TRIAL', 'TRIAL', usage.id, {
                    'trial_end_date': usage.trial_end_date.isoformat(),
                })
            expired += 1
        if expired:
            logger.info('Expired %d trials', expired)
        return expired
