"""
Financial core of the marketplace.

``build_services`` wires every engine against one LedgerStore. The factory
calls it once and keeps the result in ``app.extensions['marketplace']``;
routes reach it through ``get_services()``.
"""
from decimal import Decimal
from types import SimpleNamespace

from flask import current_app

from marketplace import db
from marketplace.models.user import PayoutMethod
from marketplace.services.commission_engine import CommissionEngine
from marketplace.services.notifications import EmailNotifier
from marketplace.services.orders import OrderService
from marketplace.services.payment_gateway import BankTransferGateway, StripePayoutGateway
from marketplace.services.payout_engine import PayoutEngine
from marketplace.services.reporting import ReportingService
from marketplace.services.store import LedgerStore
from marketplace.services.subscriptions import SubscriptionService
from marketplace.services.trial_fraud import FraudPolicy, TrialFraudScorer


def build_services(app, store=None, gateways=None, notifier=None):
    config = app.config
    store = store or LedgerStore(db.session)

    if gateways is None:
        gateways = {
            PayoutMethod.STRIPE: StripePayoutGateway(
                config.get('STRIPE_SECRET_KEY'), currency=config.get('PAYOUT_CURRENCY', 'usd')
            ),
            PayoutMethod.BANK_TRANSFER: BankTransferGateway(),
        }
    notifier = notifier or EmailNotifier.from_config(config)

    commissions = CommissionEngine(store, default_rate=config.get('DEFAULT_COMMISSION_RATE', Decimal('0.15')))
    subscriptions = SubscriptionService(store)
    payouts = PayoutEngine(
        store, gateways,
        notifier=notifier,
        default_minimum=config.get('DEFAULT_MINIMUM_PAYOUT', Decimal('50')),
    )

    return SimpleNamespace(
        store=store,
        gateways=gateways,
        notifier=notifier,
        commissions=commissions,
        subscriptions=subscriptions,
        orders=OrderService(store, commissions),
        payouts=payouts,
        trials=TrialFraudScorer(store, subscriptions, policy=FraudPolicy.from_config(config)),
        reporting=ReportingService(store, payouts),
    )


def get_services():
    return current_app.extensions['marketplace']
