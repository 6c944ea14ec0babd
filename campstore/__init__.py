"""Flask application factory."""
from flask import Flask, request, jsonify
from flask_wtf.csrf import CSRFProtect, CSRFError
from werkzeug.exceptions import HTTPException
from campstore.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Initialize CSRF protection
    csrf = CSRFProtect(app)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        app.logger.warning(f"CSRF Error: {e.description}")
        return jsonify({'status': 'error', 'message': 'The session has expired. Reload and try again.'}), 400

    # Sentry error tracking in production
    if os.getenv('SENTRY_DSN') and (app.config.get('ENV') == 'production' or os.getenv('FLASK_ENV') == 'production'):
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            profiles_sample_rate=0.1,
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Flask-Mail for low stock alerts
    from campstore.services.notification_service import init_mail
    init_mail(app)

    # Prometheus metrics instrumentation
    from campstore.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix for HTTPS behind Nginx reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Customer identity from the session issued by the auth service
    from campstore.middleware import load_customer_identity

    @app.before_request
    def before_request_handler():
        load_customer_identity()

    # Error Handlers
    from campstore.exceptions import StoreError, InsufficientStockError
    from campstore.blueprints.metrics import stock_outs_total

    @app.errorhandler(StoreError)
    def handle_store_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"StoreError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"StoreError [{error.status_code}] {request.method} {request.path}: {error.message}")
        if isinstance(error, InsufficientStockError):
            stock_outs_total.inc()
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description, 'error': error.name}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception: {error}")
        from campstore.database import get_session
        db_session = get_session()
        if db_session is not None:
            db_session.rollback()
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from campstore.blueprints.main import main_bp
    from campstore.blueprints.metrics import metrics_bp
    from campstore.blueprints.cart import cart_bp
    from campstore.blueprints.orders import orders_bp
    from campstore.blueprints.admin_orders import admin_orders_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(metrics_bp)

    # JSON API blueprints are exempt from CSRF (session cookie is SameSite)
    for api_bp in (cart_bp, orders_bp, admin_orders_bp):
        csrf.exempt(api_bp)
        app.register_blueprint(api_bp)

    # Register CLI commands
    from campstore.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"MAIL_SERVER={app.config.get('MAIL_SERVER')}")
    app.logger.info(f"S3_BUCKET={app.config.get('S3_BUCKET')}")

    return app
