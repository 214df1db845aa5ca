"""
Flask Web Application for the fleet rental backend.
Provides the JSON API consumed by the dashboard.
"""

import logging

from flask import Flask, jsonify, request
from flask_cors import CORS

from ..common.config_loader import get_config, get_flask_config
from ..common.date_utils import utcnow
from ..common.engine import get_pool_stats
from ..common.exceptions import FleetError
from ..common.logging_setup import setup_logging_from_config

logger = logging.getLogger(__name__)


def create_app(services=None, db_url=None, config=None):
    """
    Create Flask application with the API blueprint registered.

    Args:
        services: FleetServices instance (optional, built from config if not provided)
        db_url: Database URL used when services are built here
        config: Extra Flask config values (e.g. JWT_SECRET, TESTING)

    Returns:
        Flask application
    """
    setup_logging_from_config()

    app = Flask(__name__)

    # Load Flask configuration from unified config
    app.config.update(get_flask_config())
    jwt_cfg = get_config().app.jwt
    if jwt_cfg and jwt_cfg.algorithm:
        app.config['JWT_ALGORITHM'] = jwt_cfg.algorithm
    if config:
        app.config.update(config)

    if services is None:
        from ..services import build_services_from_config
        services = build_services_from_config(db_url)

    app.extensions['fleetrent'] = services

    CORS(app, supports_credentials=True)

    @app.errorhandler(FleetError)
    def handle_fleet_error(error):
        if error.status_code >= 500:
            logger.error(f"{error.kind}: {error.message}")
        response = jsonify(error.to_dict())
        response.status_code = error.status_code
        return response

    # Security headers and no caching of API responses
    @app.after_request
    def add_security_headers(response):
        if request.path.startswith('/api/'):
            response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
            response.headers['Pragma'] = 'no-cache'
            response.headers['Expires'] = '0'

        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        return response

    from .routes.api import api_bp
    app.register_blueprint(api_bp)

    @app.route('/health')
    def health():
        return jsonify({
            'status': 'healthy',
            'timestamp': utcnow().isoformat(),
            'database': get_pool_stats(services.session_manager.engine),
        })

    return app


def run_app(host='0.0.0.0', port=5000, debug=False, db_url=None):
    """Run the Flask application."""
    app = create_app(db_url=db_url)

    flask_settings = get_config().app.flask
    if flask_settings:
        host = flask_settings.host or host
        port = flask_settings.port or port
        debug = flask_settings.debug if flask_settings.debug is not None else debug

    app.run(host=host, port=port, debug=debug)
