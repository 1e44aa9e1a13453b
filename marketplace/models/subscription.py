from marketplace import db
from marketplace.utils.clock import utcnow
import uuid


class SubscriptionTier:
    STARTER = 'STARTER'
    BASIC = 'BASIC'
    PRO = 'PRO'
    PREMIUM = 'PREMIUM'
    ENTERPRISE = 'ENTERPRISE'

    ALL = (STARTER, BASIC, PRO, PREMIUM, ENTERPRISE)


class SubscriptionStatus:
    ACTIVE = 'ACTIVE'
    INACTIVE = 'INACTIVE'
    CANCELLED = 'CANCELLED'


class BillingCycle:
    MONTHLY = 'MONTHLY'
    YEARLY = 'YEARLY'


class SubscriptionPlan(db.Model):
    __tablename__ = 'subscription_plans'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    tier = db.Column(db.String(20), nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    billing_cycle = db.Column(db.String(20), default=BillingCycle.MONTHLY)
    trial_days = db.Column(db.Integer, default=0, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


class Subscription(db.Model):
    __tablename__ = 'subscriptions'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    vendor_id = db.Column(db.String(36), db.ForeignKey('vendors.id'), nullable=False)
    plan_id = db.Column(db.String(36), db.ForeignKey('subscription_plans.id'))

    tier = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), default=SubscriptionStatus.ACTIVE, nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    billing_cycle = db.Column(db.String(20), default=BillingCycle.MONTHLY)

    start_date = db.Column(db.DateTime, default=utcnow, nullable=False)
    end_date = db.Column(db.DateTime)
    trial_end_date = db.Column(db.DateTime)
    stripe_customer_id = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    plan = db.relationship('SubscriptionPlan', backref='subscriptions')
