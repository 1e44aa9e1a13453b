from marketplace import db
from marketplace.utils.clock import utcnow
import uuid


class CommissionStatus:
    PENDING = 'PENDING'
    CALCULATED = 'CALCULATED'
    PAID = 'PAID'
    CANCELLED = 'CANCELLED'

    # Statuses a commission may still be bundled into a payout from
    PAYABLE = (PENDING, CALCULATED)

    TRANSITIONS = {
        PENDING: (CALCULATED, PAID, CANCELLED),
        CALCULATED: (PAID, CANCELLED),
        PAID: (),
        CANCELLED: (),
    }


class PayoutStatus:
    PENDING = 'PENDING'
    PROCESSING = 'PROCESSING'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'

    TRANSITIONS = {
        PENDING: (PROCESSING, FAILED),
        PROCESSING: (COMPLETED, FAILED),
        COMPLETED: (),
        FAILED: (),
    }
    UNDELETABLE = (PROCESSING, COMPLETED)


class Commission(db.Model):
    __tablename__ = 'commissions'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = db.Column(db.String(36), db.ForeignKey('orders.id'), unique=True, nullable=False)
    vendor_id = db.Column(db.String(36), db.ForeignKey('vendors.id'), nullable=False)
    payout_id = db.Column(db.String(36), db.ForeignKey('payouts.id'), nullable=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)   # platform's cut
    rate = db.Column(db.Numeric(5, 4), nullable=False)
    status = db.Column(db.String(20), default=CommissionStatus.PENDING, nullable=False)
    breakdown = db.Column(db.JSON)

    calculated_at = db.Column(db.DateTime)
    paid_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    order = db.relationship('Order', backref=db.backref('commission', uselist=False))
    payout = db.relationship('Payout', back_populates='commissions')


class Payout(db.Model):
    __tablename__ = 'payouts'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    vendor_id = db.Column(db.String(36), db.ForeignKey('vendors.id'), nullable=False)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(20), default=PayoutStatus.PENDING, nullable=False)
    scheduled_date = db.Column(db.DateTime, default=utcnow, nullable=False)
    processed_at = db.Column(db.DateTime)
    failure_reason = db.Column(db.Text)
    payment_reference = db.Column(db.String(255))
    retry_count = db.Column(db.Integer, default=0, nullable=False)
    notes = db.Column(db.Text)
    # 'metadata' is reserved on declarative classes
    payout_metadata = db.Column('metadata', db.JSON)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    vendor = db.relationship('Vendor', backref='payouts')
    commissions = db.relationship('Commission', back_populates='payout', lazy=True)
