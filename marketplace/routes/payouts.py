from flask import Blueprint, request, jsonify, current_app

from marketplace.errors import InvalidInput
from marketplace.models import Payout
from marketplace.models.commission import PayoutStatus
from marketplace.models.user import Role
from marketplace.schemas import (
    PayoutRequestSchema, PayoutSettingsSchema, PayoutUpdateSchema,
    payout_schema, payouts_schema, payout_settings_schema
)
from marketplace.services import get_services
from marketplace.utils.auth import admin_required, role_required, current_actor, resolve_vendor_id
from marketplace.utils.money import jsonable

payouts_bp = Blueprint('payouts', __name__)

VENDOR_VIEWERS = (Role.VENDOR, Role.ADMIN, Role.FINANCE_ANALYST)
PAYOUT_ADMINS = (Role.ADMIN, Role.FINANCE_ANALYST)


# ================= VENDOR WALLET =================

@payouts_bp.route('/vendor/wallet', methods=['GET'])
@role_required(*VENDOR_VIEWERS)
def vendor_wallet():
    vendor_id = resolve_vendor_id(request.args.get('vendor_id'))
    wallet = get_services().reporting.vendor_wallet(vendor_id)
    return jsonify(jsonable(wallet)), 200


@payouts_bp.route('/vendor/payouts', methods=['GET'])
@role_required(*VENDOR_VIEWERS)
def vendor_payouts():
    vendor_id = resolve_vendor_id(request.args.get('vendor_id'))
    payouts = get_services().store.payouts_for_vendor(vendor_id)
    return jsonify({'vendor_id': vendor_id, 'payouts': payouts_schema.dump(payouts)}), 200


@payouts_bp.route('/vendor/payouts/pending', methods=['GET'])
@role_required(*VENDOR_VIEWERS)
def pending_payout():
    vendor_id = resolve_vendor_id(request.args.get('vendor_id'))
    return jsonify(jsonable(get_services().payouts.calculate_pending_payout(vendor_id))), 200


# ---------------- REQUEST MANUAL PAYOUT ----------------
@payouts_bp.route('/vendor/payouts/request', methods=['POST'])
@role_required(Role.VENDOR, Role.ADMIN)
def request_payout():
    data = PayoutRequestSchema().load(request.get_json() or {})
    vendor_id = resolve_vendor_id(data.get('vendor_id'))

    payout = get_services().payouts.request_payout(
        vendor_id, data['amount'], notes=data.get('notes'), actor_id=current_actor()
    )
    current_app.logger.info('Payout %s requested by %s', payout.id, current_actor())
    return jsonify({
        'message': 'Payout request submitted successfully',
        'payout': payout_schema.dump(payout)
    }), 201


# ---------------- PAYOUT SETTINGS ----------------
@payouts_bp.route('/vendor/payout-settings', methods=['GET'])
@role_required(*VENDOR_VIEWERS)
def get_payout_settings():
    vendor_id = resolve_vendor_id(request.args.get('vendor_id'))
    settings = get_services().payouts.get_payout_settings(vendor_id, actor_id=current_actor())
    return jsonify(payout_settings_schema.dump(settings)), 200


@payouts_bp.route('/vendor/payout-settings', methods=['PUT'])
@role_required(Role.VENDOR, Role.ADMIN)
def update_payout_settings():
    payload = request.get_json() or {}
    data = PayoutSettingsSchema().load(payload)
    vendor_id = resolve_vendor_id(payload.get('vendor_id') or request.args.get('vendor_id'))

    settings = get_services().payouts.update_payout_settings(
        vendor_id,
        minimum_payout=data.get('minimum_payout'),
        payout_frequency=data.get('payout_frequency'),
        payout_method=data.get('payout_method'),
        is_active=data.get('is_active'),
        actor_id=current_actor()
    )
    return jsonify({
        'message': 'Payout settings updated',
        'settings': payout_settings_schema.dump(settings)
    }), 200


# ================= ADMIN =================

@payouts_bp.route('/admin/payouts', methods=['GET'])
@role_required(*PAYOUT_ADMINS)
def list_payouts():
    status = request.args.get('status')
    if status and status not in PayoutStatus.TRANSITIONS:
        raise InvalidInput(f'Unknown payout status: {status}')

    statuses = (status,) if status else tuple(PayoutStatus.TRANSITIONS)
    payouts = get_services().store.payouts_with_status(*statuses)
    return jsonify({'payouts': payouts_schema.dump(payouts)}), 200


@payouts_bp.route('/admin/payouts/<payout_id>', methods=['GET'])
@role_required(*PAYOUT_ADMINS)
def get_payout(payout_id):
    payout = get_services().store.get_or_fail(Payout, payout_id, 'Payout')
    return jsonify(payout_schema.dump(payout)), 200


@payouts_bp.route('/admin/payouts/<payout_id>', methods=['PUT'])
@admin_required
def update_payout(payout_id):
    data = PayoutUpdateSchema().load(request.get_json() or {})
    payout = get_services().payouts.update_payout(
        payout_id, status=data.get('status'), notes=data.get('notes'), actor_id=current_actor()
    )
    return jsonify({
        'message': 'Payout updated successfully',
        'payout': payout_schema.dump(payout)
    }), 200


@payouts_bp.route('/admin/payouts/<payout_id>', methods=['DELETE'])
@admin_required
def delete_payout(payout_id):
    get_services().payouts.delete_payout(payout_id, actor_id=current_actor())
    return jsonify({'message': 'Payout deleted successfully'}), 200


@payouts_bp.route('/admin/payouts/<payout_id>/process', methods=['POST'])
@role_required(*PAYOUT_ADMINS)
def process_payout(payout_id):
    payout = get_services().payouts.submit_payout(payout_id, actor_id=current_actor())
    if payout.status == PayoutStatus.FAILED:
        return jsonify({
            'message': f'Payout failed: {payout.failure_reason}',
            'payout': payout_schema.dump(payout)
        }), 200
    return jsonify({
        'message': 'Payout submitted for processing',
        'payout': payout_schema.dump(payout)
    }), 200


@payouts_bp.route('/admin/payouts/process-all', methods=['POST'])
@admin_required
def process_all_payouts():
    result = get_services().payouts.run_scheduled_payouts(actor_id=current_actor())
    return jsonify({
        'message': 'Scheduled payouts processed',
        **result
    }), 200
