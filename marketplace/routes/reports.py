from flask import Blueprint, request, jsonify

from marketplace.models.user import Role
from marketplace.schemas import PeriodSchema
from marketplace.services import get_services
from marketplace.utils.auth import role_required, resolve_vendor_id
from marketplace.utils.money import jsonable

reports_bp = Blueprint('reports', __name__)

FINANCE = (Role.ADMIN, Role.FINANCE_ANALYST)


@reports_bp.route('/commissions/summary', methods=['GET'])
@role_required(Role.VENDOR, *FINANCE)
def commission_summary():
    period = PeriodSchema().load(request.args)
    vendor_id = resolve_vendor_id(period.get('vendor_id'))
    summary = get_services().reporting.commission_summary(
        vendor_id, start=period.get('start'), end=period.get('end')
    )
    return jsonify(jsonable(summary)), 200


@reports_bp.route('/commissions', methods=['GET'])
@role_required(*FINANCE)
def commission_report():
    period = PeriodSchema().load(request.args)
    report = get_services().reporting.commission_report(
        start=period.get('start'), end=period.get('end'), vendor_id=period.get('vendor_id')
    )
    return jsonify(jsonable(report)), 200


@reports_bp.route('/finance/dashboard', methods=['GET'])
@role_required(*FINANCE)
def finance_dashboard():
    return jsonify(jsonable(get_services().reporting.finance_dashboard())), 200
