from flask import Blueprint, request, jsonify

from marketplace.errors import Forbidden
from marketplace.models.user import Role
from marketplace.schemas import OrderCreateSchema, OrderStatusSchema, order_schema
from marketplace.services import get_services
from marketplace.utils.auth import role_required, current_actor, current_role, is_staff, resolve_vendor_id

orders_bp = Blueprint('orders', __name__)


def _check_order_access(order):
    if is_staff():
        return
    if current_role() == Role.CUSTOMER and order.customer_id == current_actor():
        return
    if current_role() == Role.VENDOR and resolve_vendor_id() == order.vendor_id:
        return
    raise Forbidden('You do not have access to this order')


# ---------------- PLACE ORDER ----------------
@orders_bp.route('', methods=['POST'])
@role_required(Role.CUSTOMER, Role.ADMIN)
def create_order():
    data = OrderCreateSchema().load(request.get_json() or {})

    customer_id = current_actor()
    if current_role() == Role.ADMIN and data.get('customer_id'):
        customer_id = data['customer_id']

    order = get_services().orders.create_order(
        customer_id=customer_id,
        vendor_id=data['vendor_id'],
        items=data['items'],
        notes=data.get('notes'),
        actor_id=current_actor()
    )
    return jsonify({
        'message': 'Order placed successfully',
        'order': order_schema.dump(order)
    }), 201


# ---------------- GET ORDER ----------------
@orders_bp.route('/<order_id>', methods=['GET'])
@role_required()
def get_order(order_id):
    order = get_services().store.get_order(order_id)
    _check_order_access(order)
    return jsonify(order_schema.dump(order)), 200


# ---------------- UPDATE ORDER STATUS ----------------
@orders_bp.route('/<order_id>/status', methods=['PUT'])
@role_required(Role.VENDOR, Role.ADMIN, Role.OPERATIONS_MANAGER)
def update_order_status(order_id):
    data = OrderStatusSchema().load(request.get_json() or {})
    services = get_services()

    order = services.store.get_order(order_id)
    if current_role() == Role.VENDOR:
        resolve_vendor_id(order.vendor_id)

    order = services.orders.update_order_status(order.id, data['status'], actor_id=current_actor())
    return jsonify({
        'message': f'Order status updated to {order.status}',
        'order': order_schema.dump(order)
    }), 200
