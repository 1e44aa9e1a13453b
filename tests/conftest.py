"""
Pytest configuration and fixtures for the marketplace backend.
"""
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from flask_jwt_extended import create_access_token

from marketplace import create_app, db, bcrypt
from marketplace.config import TestingConfig
from marketplace.errors import PayoutProcessingError
from marketplace.models import (
    Commission, Order, Product, Subscription, SubscriptionPlan, User, Vendor,
    VendorPayoutSettings
)
from marketplace.models.commission import CommissionStatus
from marketplace.models.order import OrderStatus
from marketplace.models.subscription import BillingCycle, SubscriptionStatus
from marketplace.models.user import PayoutMethod, Role, VendorStatus
from marketplace.utils.clock import utcnow
from marketplace.utils.money import to_money

TEST_PASSWORD = 'testpassword123'


@pytest.fixture(scope='function')
def app():
    """Create a Flask app on a fresh in-memory database."""
    flask_app = create_app(TestingConfig)

    with flask_app.app_context():
        db.create_all()

        yield flask_app

        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create a test client for making requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def services(app):
    return app.extensions['marketplace']


class FakeGateway:
    """Payout gateway double; fails with `error` when set."""

    def __init__(self):
        self.error = None
        self.executed = []

    def execute(self, payout, subscription):
        if self.error:
            raise PayoutProcessingError(self.error)
        self.executed.append(payout.id)
        return f"ref_{len(self.executed)}"


@pytest.fixture(scope='function')
def gateway(services):
    fake = FakeGateway()
    services.gateways[PayoutMethod.STRIPE] = fake
    services.gateways[PayoutMethod.BANK_TRANSFER] = fake
    return fake


# ----- Data builders -----

@pytest.fixture(scope='function')
def make_user(app):
    def _make_user(role=Role.CUSTOMER, email=None, age=timedelta(days=30), phone_number=None):
        user = User(
            email=email or f"user-{uuid.uuid4().hex[:8]}@shop.io",
            name='Test User',
            password_hash=bcrypt.generate_password_hash(TEST_PASSWORD).decode('utf-8'),
            role=role,
            phone_number=phone_number,
            created_at=utcnow() - age,
        )
        db.session.add(user)
        db.session.commit()
        return user
    return _make_user


@pytest.fixture(scope='function')
def make_plan(app):
    def _make_plan(tier, price=Decimal('50.00'), trial_days=14, billing_cycle=BillingCycle.MONTHLY):
        plan = SubscriptionPlan(
            name=f"{tier.title()} Plan",
            tier=tier,
            price=price,
            billing_cycle=billing_cycle,
            trial_days=trial_days,
        )
        db.session.add(plan)
        db.session.commit()
        return plan
    return _make_plan


@pytest.fixture(scope='function')
def make_vendor(make_user):
    def _make_vendor(tier=None, minimum_payout=None, email=None, user_age=timedelta(days=30),
                     price=Decimal('50.00'), billing_cycle=BillingCycle.MONTHLY):
        user = make_user(role=Role.VENDOR, email=email, age=user_age)
        vendor = Vendor(user_id=user.id, business_name='Test Shop', status=VendorStatus.ACTIVE)
        db.session.add(vendor)
        db.session.flush()

        if tier:
            db.session.add(Subscription(
                vendor_id=vendor.id,
                tier=tier,
                status=SubscriptionStatus.ACTIVE,
                price=price,
                billing_cycle=billing_cycle,
                start_date=utcnow() - timedelta(days=10),
                stripe_customer_id='cus_test',
            ))
        if minimum_payout is not None:
            db.session.add(VendorPayoutSettings(vendor_id=vendor.id, minimum_payout=minimum_payout))
        db.session.commit()
        return vendor
    return _make_vendor


@pytest.fixture(scope='function')
def customer(make_user):
    return make_user(role=Role.CUSTOMER)


@pytest.fixture(scope='function')
def make_product(app):
    def _make_product(vendor, price, inventory=10):
        product = Product(vendor_id=vendor.id, name='Widget', price=price, inventory=inventory)
        db.session.add(product)
        db.session.commit()
        return product
    return _make_product


@pytest.fixture(scope='function')
def make_commission(customer):
    """Write an order and its commission directly, bypassing the engines."""
    def _make_commission(vendor, order_total, rate=Decimal('0.15'), created_at=None,
                         status=CommissionStatus.CALCULATED, snapshot=True):
        total = to_money(order_total)
        amount = to_money(total * rate)
        order = Order(
            order_number=f"ORD-{uuid.uuid4().hex[:10]}",
            vendor_id=vendor.id,
            customer_id=customer.id,
            status=OrderStatus.DELIVERED,
            total_price=total,
        )
        db.session.add(order)
        db.session.flush()
        commission = Commission(
            order_id=order.id,
            vendor_id=vendor.id,
            amount=amount,
            rate=rate,
            status=status,
            breakdown={'orderTotal': str(total), 'rate': str(rate)} if snapshot else None,
            created_at=created_at or utcnow(),
        )
        db.session.add(commission)
        db.session.commit()
        return commission
    return _make_commission


@pytest.fixture(scope='function')
def auth_headers(app):
    def _auth_headers(user):
        token = create_access_token(identity=user.id, additional_claims={'role': user.role})
        return {'Authorization': f'Bearer {token}'}
    return _auth_headers


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user(role=Role.ADMIN, email='admin@shop.io')


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests (fast)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (slower)"
    )
