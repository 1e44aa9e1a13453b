from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager
from flask_cors import CORS
from flask_bcrypt import Bcrypt
from flask_marshmallow import Marshmallow
from marshmallow import ValidationError
from werkzeug.middleware.proxy_fix import ProxyFix


db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()
bcrypt = Bcrypt()
ma = Marshmallow()


def create_app(config_object='marketplace.config.Config'):
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(config_object)

    hops = app.config.get('TRUSTED_PROXY_HOPS', 0)
    if hops:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops, x_proto=hops)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    CORS(app)
    bcrypt.init_app(app)
    ma.init_app(app)

    from marketplace.logging_config import setup_logging
    setup_logging(app)

    from marketplace import models  # noqa: F401  (registers tables)

    with app.app_context():
        from marketplace.database_setup import initialize_database, register_db_commands

        register_db_commands(app)
        if app.config.get('AUTO_INIT_DB'):
            initialize_database()

    # Financial core, built once per process and shared by every request
    from marketplace.services import build_services
    app.extensions['marketplace'] = build_services(app)

    # Register blueprints
    from marketplace.routes.auth import auth_bp
    from marketplace.routes.orders import orders_bp
    from marketplace.routes.commissions import commissions_bp
    from marketplace.routes.payouts import payouts_bp
    from marketplace.routes.trials import trials_bp
    from marketplace.routes.reports import reports_bp
    from marketplace.routes.webhooks import webhooks_bp

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(orders_bp, url_prefix='/api/orders')
    app.register_blueprint(commissions_bp, url_prefix='/api/commissions')
    app.register_blueprint(payouts_bp, url_prefix='/api')
    app.register_blueprint(trials_bp, url_prefix='/api/trials')
    app.register_blueprint(reports_bp, url_prefix='/api/reports')
    app.register_blueprint(webhooks_bp, url_prefix='/api/webhooks')

    @app.route('/api/health')
    def health_check():
        return {
            'status': 'healthy',
            'message': 'Marketplace API is running!',
            'version': '1.0.0'
        }, 200

    register_error_handlers(app)

    return app


def register_error_handlers(app):
    from marketplace.errors import MarketplaceError

    @app.errorhandler(MarketplaceError)
    def handle_marketplace_error(error):
        app.logger.info('Rejected request: %s (%s)', error.message, error.code)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error):
        return jsonify({
            'message': 'Invalid request body',
            'code': 'INVALID_INPUT',
            'details': error.messages
        }), 400

    @app.errorhandler(404)
    def not_found(error):
        return {
            'message': 'API endpoint not found',
            'code': 'NOT_FOUND'
        }, 404

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.error('Unhandled server error: %s', error)
        return {
            'message': 'Internal server error',
            'code': 'SERVER_ERROR'
        }, 500
