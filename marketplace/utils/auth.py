from functools import wraps
from flask import jsonify
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity, get_jwt

from marketplace.errors import Forbidden, InvalidInput
from marketplace.models.user import Role
from marketplace.services import get_services


def role_required(*roles):
    """Require a valid access token; when roles are given, the token's role must be one of them."""
    def wrapper(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            verify_jwt_in_request()
            claims = get_jwt()
            if roles and claims.get('role') not in roles:
                return jsonify({
                    'message': 'You do not have access to this resource',
                    'code': 'FORBIDDEN'
                }), 403
            return f(*args, **kwargs)
        return decorated
    return wrapper


admin_required = role_required(Role.ADMIN)


def current_actor():
    return get_jwt_identity()


def current_role():
    return get_jwt().get('role')


def is_staff():
    return current_role() in (Role.ADMIN, Role.FINANCE_ANALYST, Role.OPERATIONS_MANAGER)


def resolve_vendor_id(requested_vendor_id=None):
    """Vendors only ever act on their own vendor record; staff must name one."""
    if current_role() == Role.VENDOR:
        vendor = get_services().store.vendor_for_user(current_actor())
        if vendor is None:
            raise Forbidden('No vendor profile is linked to this account')
        if requested_vendor_id and requested_vendor_id != vendor.id:
            raise Forbidden('Vendors can only access their own records')
        return vendor.id

    if not requested_vendor_id:
        raise InvalidInput('vendor_id is required')
    return requested_vendor_id
