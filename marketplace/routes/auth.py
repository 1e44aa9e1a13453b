from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import create_access_token, create_refresh_token

from marketplace import bcrypt
from marketplace.models import User
from marketplace.schemas import LoginSchema
from marketplace.services import get_services
from marketplace.utils.auth import role_required, current_actor

auth_bp = Blueprint('auth', __name__)


# ------------------ LOGIN ------------------
@auth_bp.route('/login', methods=['POST'])
def login():
    data = LoginSchema().load(request.get_json() or {})

    user = User.query.filter_by(email=data['email']).first()
    if not user or not user.is_active or not user.password_hash \
            or not bcrypt.check_password_hash(user.password_hash, data['password']):
        current_app.logger.info('Failed login for %s', data['email'])
        return jsonify({'message': 'Invalid email or password', 'code': 'INVALID_CREDENTIALS'}), 401

    claims = {'role': user.role, 'email': user.email}
    vendor = get_services().store.vendor_for_user(user.id)
    if vendor:
        claims['vendor_id'] = vendor.id

    return jsonify({
        'access_token': create_access_token(identity=user.id, additional_claims=claims),
        'refresh_token': create_refresh_token(identity=user.id),
        'user': {
            'id': user.id,
            'email': user.email,
            'name': user.name,
            'role': user.role
        }
    }), 200


# ------------------ CURRENT USER ------------------
@auth_bp.route('/me', methods=['GET'])
@role_required()
def me():
    user = get_services().store.get_user(current_actor())
    if not user:
        return jsonify({'message': 'User not found', 'code': 'NOT_FOUND'}), 404
    return jsonify({
        'id': user.id,
        'email': user.email,
        'name': user.name,
        'role': user.role
    }), 200
