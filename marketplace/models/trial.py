from marketplace import db
from marketplace.utils.clock import utcnow
import uuid


class TrialStatus:
    ACTIVE = 'ACTIVE'
    CONVERTED = 'CONVERTED'
    EXPIRED = 'EXPIRED'
    CANCELLED = 'CANCELLED'


class TrialUsage(db.Model):
    """One accepted trial signup, kept for abuse detection."""
    __tablename__ = 'trial_usages'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False)
    plan_id = db.Column(db.String(36), db.ForeignKey('subscription_plans.id'), nullable=False)

    email = db.Column(db.String(255), nullable=False, index=True)
    ip_address = db.Column(db.String(64), nullable=False, index=True)
    phone_number = db.Column(db.String(40))
    payment_card_last4 = db.Column(db.String(4))
    user_agent = db.Column(db.Text)
    stripe_customer_id = db.Column(db.String(255))

    trial_start_date = db.Column(db.DateTime, nullable=False)
    trial_end_date = db.Column(db.DateTime, nullable=False)
    fraud_score = db.Column(db.Integer, nullable=False, default=0)
    is_fraudulent = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(20), default=TrialStatus.ACTIVE, nullable=False)
    notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    user = db.relationship('User')
    plan = db.relationship('SubscriptionPlan')
