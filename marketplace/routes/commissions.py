from flask import Blueprint, request, jsonify

from marketplace.errors import InvalidInput
from marketplace.models import Commission
from marketplace.models.user import Role
from marketplace.schemas import CommissionStatusSchema, commission_schema, commissions_schema
from marketplace.services import get_services
from marketplace.utils.auth import role_required, current_actor, current_role, resolve_vendor_id
from marketplace.utils.money import jsonable

commissions_bp = Blueprint('commissions', __name__)

VIEWERS = (Role.VENDOR, Role.ADMIN, Role.FINANCE_ANALYST)


@commissions_bp.route('', methods=['GET'])
@role_required(*VIEWERS)
def list_commissions():
    vendor_id = resolve_vendor_id(request.args.get('vendor_id'))
    commissions = get_services().store.commissions_for_vendor(vendor_id)
    return jsonify({
        'vendor_id': vendor_id,
        'commissions': commissions_schema.dump(commissions)
    }), 200


@commissions_bp.route('/<commission_id>', methods=['GET'])
@role_required(*VIEWERS)
def get_commission(commission_id):
    commission = get_services().store.get_or_fail(Commission, commission_id, 'Commission')
    if current_role() == Role.VENDOR:
        resolve_vendor_id(commission.vendor_id)
    return jsonify(commission_schema.dump(commission)), 200


# Preview only; nothing is written
@commissions_bp.route('/calculate', methods=['POST'])
@role_required(*VIEWERS)
def calculate_commission():
    data = request.get_json() or {}
    vendor_id = resolve_vendor_id(data.get('vendor_id'))
    if data.get('order_total') is None:
        raise InvalidInput('order_total is required')

    try:
        result = get_services().commissions.calculate_commission(
            data.get('order_id'), vendor_id, data['order_total']
        )
    except ValueError as e:
        raise InvalidInput(str(e)) from e
    return jsonify(jsonable(result)), 200


@commissions_bp.route('/<commission_id>/status', methods=['PUT'])
@role_required(Role.ADMIN, Role.FINANCE_ANALYST)
def update_commission_status(commission_id):
    data = CommissionStatusSchema().load(request.get_json() or {})
    commission = get_services().commissions.transition_commission(
        commission_id, data['status'], actor_id=current_actor()
    )
    return jsonify({
        'message': f'Commission is {commission.status}',
        'commission': commission_schema.dump(commission)
    }), 200
