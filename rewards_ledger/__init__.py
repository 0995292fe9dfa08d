"""
Rewards Ledger
Flask application factory
"""
import os
import logging
from flask import Flask
from flask_cors import CORS

from .extensions import db, migrate
from .config import get_config, validate_config
from .store import configure_sqlite_engine
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def create_app(config_name: str = None, config_overrides: dict = None) -> Flask:
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration environment (development, production, testing)
        config_overrides: Extra config values applied after the config class

    Returns:
        Configured Flask application
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    # Setup logging before anything else
    setup_logging()
    validate_config(config_name)

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    with app.app_context():
        if db.engine.dialect.name == 'sqlite':
            configure_sqlite_engine(db.engine)

    CORS(
        app,
        origins=app.config['CORS_ORIGINS'],
        supports_credentials=True,
        allow_headers=['Content-Type', 'Authorization', 'X-User-ID', 'X-User-Role']
    )

    # Services (ledger, catalog, engine, workflow, audit)
    from .services import init_services
    init_services(app)

    # Register blueprints
    register_blueprints(app)

    # Register CLI commands
    from .commands import init_app as init_commands
    init_commands(app)

    # Register error handlers
    register_error_handlers(app)

    # Health check endpoint
    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'service': 'rewards-ledger'}

    logger.info(f'Rewards ledger started ({config_name})')
    return app


def register_blueprints(app: Flask) -> None:
    """Register all API blueprints."""
    from .api import RecordIdConverter
    app.url_map.converters['id'] = RecordIdConverter

    from .api.points import points_bp
    from .api.rewards import rewards_bp
    from .api.reward_requests import reward_requests_bp

    app.register_blueprint(points_bp, url_prefix='/api/points')
    app.register_blueprint(rewards_bp, url_prefix='/api/rewards')
    app.register_blueprint(reward_requests_bp, url_prefix='/api/reward-requests')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from .utils.errors import error_response, internal_error as internal_error_response, ErrorCode
    from .utils.exceptions import LedgerError

    @app.errorhandler(LedgerError)
    def ledger_error(error):
        return error_response(error.message, error.code, error.status_code)

    @app.errorhandler(400)
    def bad_request(error):
        return error_response('Bad request', ErrorCode.INVALID_REQUEST, 400, log_error=False)

    @app.errorhandler(404)
    def not_found(error):
        return error_response('Not found', ErrorCode.NOT_FOUND, 404, log_error=False)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return error_response('Method not allowed', ErrorCode.INVALID_REQUEST, 405, log_error=False)

    @app.errorhandler(500)
    def internal_error(error):
        return internal_error_response('Internal server error')
