"""Flask application factory."""
import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from packchain.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Logging: service modules log through logging.getLogger(__name__)
    log_level = app.config.get('LOG_LEVEL', 'INFO')
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )
    logging.getLogger('packchain').setLevel(log_level)
    app.logger.setLevel(log_level)

    # Initialize database
    init_db(app)

    # Register blueprints
    from packchain.health import health_bp
    app.register_blueprint(health_bp)

    # Error Handlers
    from packchain.exceptions import PackchainError

    @app.errorhandler(PackchainError)
    def handle_packchain_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"PackchainError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"PackchainError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register CLI commands
    from packchain.cli_commands import init_cli_commands
    init_cli_commands(app)

    return app
