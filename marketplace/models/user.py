from marketplace import db
from marketplace.utils.clock import utcnow
import uuid


class Role:
    ADMIN = 'ADMIN'
    VENDOR = 'VENDOR'
    CUSTOMER = 'CUSTOMER'
    FINANCE_ANALYST = 'FINANCE_ANALYST'
    OPERATIONS_MANAGER = 'OPERATIONS_MANAGER'

    ALL = (ADMIN, VENDOR, CUSTOMER, FINANCE_ANALYST, OPERATIONS_MANAGER)


class VendorStatus:
    PENDING_VERIFICATION = 'PENDING_VERIFICATION'
    ACTIVE = 'ACTIVE'
    SUSPENDED = 'SUSPENDED'
    INACTIVE = 'INACTIVE'
    REJECTED = 'REJECTED'


class PayoutFrequency:
    DAILY = 'DAILY'
    WEEKLY = 'WEEKLY'
    MONTHLY = 'MONTHLY'

    ALL = (DAILY, WEEKLY, MONTHLY)


class PayoutMethod:
    STRIPE = 'STRIPE'
    BANK_TRANSFER = 'BANK_TRANSFER'

    ALL = (STRIPE, BANK_TRANSFER)


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = db.Column(db.String(255), unique=True, nullable=False)
    name = db.Column(db.String(255), nullable=False)
    password_hash = db.Column(db.String(255), nullable=False, default='')
    role = db.Column(db.String(30), nullable=False, default=Role.CUSTOMER)
    phone_number = db.Column(db.String(40))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    vendor = db.relationship('Vendor', back_populates='user', uselist=False)


class Vendor(db.Model):
    __tablename__ = 'vendors'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), unique=True)
    business_name = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(30), default=VendorStatus.PENDING_VERIFICATION, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    user = db.relationship('User', back_populates='vendor')
    subscriptions = db.relationship('Subscription', backref='vendor', lazy=True)
    products = db.relationship('Product', backref='vendor', lazy=True)
    payout_settings = db.relationship('VendorPayoutSettings', backref='vendor', uselist=False)


class VendorPayoutSettings(db.Model):
    __tablename__ = 'vendor_payout_settings'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    vendor_id = db.Column(db.String(36), db.ForeignKey('vendors.id'), unique=True, nullable=False)
    minimum_payout = db.Column(db.Numeric(10, 2), nullable=False, default=50)
    payout_frequency = db.Column(db.String(20), nullable=False, default=PayoutFrequency.WEEKLY)
    payout_method = db.Column(db.String(20), nullable=False, default=PayoutMethod.STRIPE)
    is_active = db.Column(db.Boolean, default=True)
    last_payout_date = db.Column(db.DateTime)
    next_payout_date = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
