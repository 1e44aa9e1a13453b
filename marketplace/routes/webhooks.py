from flask import Blueprint, request, jsonify, current_app
import stripe

from marketplace.errors import MarketplaceError
from marketplace.services import get_services

webhooks_bp = Blueprint('webhooks', __name__)


# ---------------- STRIPE WEBHOOK ----------------
@webhooks_bp.route('/stripe', methods=['POST'])
def stripe_webhook():
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get('Stripe-Signature')
    endpoint_secret = current_app.config['STRIPE_WEBHOOK_SECRET']

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, endpoint_secret)
    except (ValueError, stripe.SignatureVerificationError):
        return jsonify({'message': 'Invalid payload or signature'}), 400

    event_type = event['type']
    if event_type not in ('payment_intent.succeeded', 'payment_intent.payment_failed'):
        return jsonify({'status': 'ignored'}), 200

    intent = event['data']['object']
    payout_id = (intent.get('metadata') or {}).get('payout_id')
    if not payout_id:
        # Charges that are not payouts
        return jsonify({'status': 'ignored'}), 200

    payouts = get_services().payouts
    try:
        if event_type == 'payment_intent.succeeded':
            payouts.complete_payout(payout_id, payment_reference=intent.get('id'), actor_id='STRIPE')
        else:
            error = intent.get('last_payment_error') or {}
            reason = error.get('message') or 'Payment failed'
            payouts.fail_payout(payout_id, reason, actor_id='STRIPE')
    except MarketplaceError as e:
        current_app.logger.warning('Stripe event %s for payout %s not applied: %s',
                                   event_type, payout_id, e.message)
        return jsonify({'status': 'ignored', 'message': e.message}), 200

    return jsonify({'status': 'success'}), 200
