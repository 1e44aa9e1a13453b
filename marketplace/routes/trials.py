from flask import Blueprint, request, jsonify

from marketplace.errors import NotFound, InvalidInput
from marketplace.models.trial import TrialStatus
from marketplace.models.user import Role
from marketplace.schemas import TrialSignupSchema, subscription_schema, trial_schema, trials_schema
from marketplace.services import get_services
from marketplace.services.trial_fraud import TrialSignup
from marketplace.utils.auth import role_required, current_actor

trials_bp = Blueprint('trials', __name__)

TRIAL_ADMINS = (Role.ADMIN, Role.OPERATIONS_MANAGER, Role.FINANCE_ANALYST)


def client_ip():
    """Peer address; forwarded headers count only through ProxyFix."""
    return request.remote_addr or 'unknown'


def _signup_from_request():
    data = TrialSignupSchema().load(request.get_json() or {})
    user = get_services().store.get_user(current_actor())
    if user is None:
        raise NotFound('User', current_actor())

    return TrialSignup(
        user_id=user.id,
        plan_id=data['plan_id'],
        email=user.email,
        ip_address=client_ip(),
        phone_number=data.get('phone_number') or user.phone_number,
        payment_card_last4=data.get('payment_card_last4'),
        user_agent=request.headers.get('User-Agent', 'unknown'),
        stripe_customer_id=data.get('stripe_customer_id'),
    )


# ---------------- START TRIAL ----------------
@trials_bp.route('/signup', methods=['POST'])
@role_required(Role.VENDOR)
def start_trial():
    signup = _signup_from_request()
    started = get_services().trials.start_trial(signup, actor_id=current_actor())
    result = started['result']
    return jsonify({
        'message': 'Trial started successfully',
        'subscription': subscription_schema.dump(started['subscription']),
        'trial': trial_schema.dump(started['trial']),
        'trialEndDate': started['trial'].trial_end_date.isoformat(),
        'fraudScore': result.fraud_score,
        'riskLevel': result.risk_level
    }), 201


# ---------------- CHECK ELIGIBILITY ----------------
@trials_bp.route('/eligibility', methods=['POST'])
@role_required(Role.VENDOR)
def check_eligibility():
    signup = _signup_from_request()
    services = get_services()
    services.store.get_plan(signup.plan_id)
    result = services.trials.check_trial_eligibility(signup)
    return jsonify(result.to_dict()), 200


# ---------------- ADMIN ----------------
@trials_bp.route('/stats', methods=['GET'])
@role_required(*TRIAL_ADMINS)
def trial_stats():
    return jsonify(get_services().reporting.trial_stats()), 200


@trials_bp.route('/usage', methods=['GET'])
@role_required(*TRIAL_ADMINS)
def trial_usage():
    status = request.args.get('status')
    valid = (TrialStatus.ACTIVE, TrialStatus.CONVERTED, TrialStatus.EXPIRED, TrialStatus.CANCELLED)
    if status and status not in valid:
        raise InvalidInput(f'Unknown trial status: {status}')

    limit = request.args.get('limit', 50, type=int)
    if limit <= 0:
        raise InvalidInput('limit must be positive')

    trials = get_services().reporting.recent_trials(limit=limit, status=status)
    return jsonify({'trials': trials_schema.dump(trials)}), 200


@trials_bp.route('/<trial_id>/convert', methods=['POST'])
@role_required(Role.ADMIN, Role.OPERATIONS_MANAGER)
def convert_trial(trial_id):
    usage = get_services().trials.convert_trial(trial_id, actor_id=current_actor())
    return jsonify({'message': 'Trial converted', 'trial': trial_schema.dump(usage)}), 200


@trials_bp.route('/<trial_id>/cancel', methods=['POST'])
@role_required(Role.ADMIN, Role.OPERATIONS_MANAGER)
def cancel_trial(trial_id):
    usage = get_services().trials.cancel_trial(trial_id, actor_id=current_actor())
    return jsonify({'message': 'Trial cancelled', 'trial': trial_schema.dump(usage)}), 200
