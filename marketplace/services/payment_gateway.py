"""
Payout gateways.

A gateway moves money for one payout and returns a payment reference, or
raises PayoutProcessingError. It never touches payout state itself.
"""
import logging
import uuid

import stripe

from marketplace.errors import PayoutProcessingError
from marketplace.utils.money import to_money

logger = logging.getLogger(__name__)


class StripePayoutGateway:
    """Charges through Stripe using the default payment method of the
    customer attached to the vendor's active subscription."""

    def __init__(self, api_key, currency='usd'):
        self.api_key = api_key
        self.currency = currency

    def execute(self, payout, subscription):
        if not self.api_key:
            raise PayoutProcessingError('Stripe is not configured')
        if subscription is None or not subscription.stripe_customer_id:
            raise PayoutProcessingError('No Stripe customer found for vendor')

        stripe.api_key = self.api_key
        amount_in_cents = int(to_money(payout.amount) * 100)

        try:
            customer = stripe.Customer.retrieve(subscription.stripe_customer_id)
            settings = customer.get('invoice_settings') or {}
            payment_method = settings.get('default_payment_method')
            if not payment_method:
                raise PayoutProcessingError('No default payment method found')

            intent = stripe.PaymentIntent.create(
                amount=amount_in_cents,
                currency=self.currency,
                customer=subscription.stripe_customer_id,
                payment_method=payment_method,
                confirm=True,
                off_session=True,
                description=f"Vendor payout {payout.id}",
                metadata={'payout_id': payout.id, 'vendor_id': payout.vendor_id},
                idempotency_key=f'payout-{payout.id}',
            )
        except stripe.StripeError as e:
            logger.warning('Stripe rejected payout %s: %s', payout.id, e)
            raise PayoutProcessingError(f'Stripe error: {e.user_message or str(e)}') from e

        return intent.id


class BankTransferGateway:
    """Records a simulated bank transfer."""

    def execute(self, payout, subscription):
        reference = f"BT-{uuid.uuid4().hex[:12].upper()}"
        logger.info('Bank transfer %s queued for payout %s', reference, payout.id)
        return reference
