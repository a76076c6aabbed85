"""
Liyaqa - Multi-tenant gym management platform
Tenants, clubs, members, billing with ZATCA e-invoicing, shop and
marketing automation for fitness businesses in Saudi Arabia
"""
from flask import Flask, jsonify
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
import os
import logging

__version__ = "1.4.0"

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """Application factory pattern"""
    app = Flask(__name__)

    # Fix for running behind a reverse proxy (Render, Heroku, etc.)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    # Load config
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    from liyaqa.config import config
    # Use instance instead of class to support @property
    config_instance = config[config_name]()
    app.config.from_object(config_instance)

    # Enable CORS - IMPORTANT: Set CORS_ORIGINS env var in production!
    cors_origins = app.config.get('CORS_ORIGINS', '*')
    if cors_origins == '*' and config_name == 'production':
        logger.warning("SECURITY: CORS_ORIGINS is set to '*' in production! Set specific origins.")
    CORS(app, origins=cors_origins)

    # Rate limiting (RATELIMIT_ENABLED switches it off for tests)
    limiter = Limiter(
        app=app,
        key_func=get_remote_address,
        default_limits=[limit.strip() for limit in app.config['RATELIMIT_DEFAULT'].split(';') if limit.strip()],
        storage_uri="memory://"
    )
    app.limiter = limiter  # Store for use in routes

    # Initialize database
    from liyaqa.database import db, init_db
    init_db(app)

    # Register blueprints
    from liyaqa.routes import register_routes
    register_routes(app)

    # Brute-force protection on the login endpoint
    app.view_functions['auth.login'] = limiter.limit(app.config['LOGIN_RATE_LIMIT'])(
        app.view_functions['auth.login']
    )

    # ==========================================
    # GLOBAL ERROR HANDLERS
    # ==========================================

    from liyaqa.exceptions import LiyaqaError

    @app.errorhandler(LiyaqaError)
    def handle_domain_error(error):
        db.session.rollback()
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({
            'error': 'Bad request',
            'message': str(error.description) if hasattr(error, 'description') else 'Invalid request'
        }), 400

    @app.errorhandler(401)
    def unauthorized(error):
        return jsonify({
            'error': 'Unauthorized',
            'message': 'Authentication required'
        }), 401

    @app.errorhandler(403)
    def forbidden(error):
        return jsonify({
            'error': 'Forbidden',
            'message': 'Access denied'
        }), 403

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'error': 'Not found',
            'message': 'The requested resource was not found'
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            'error': 'Method not allowed',
            'message': 'The method is not allowed for the requested URL'
        }), 405

    @app.errorhandler(429)
    def rate_limited(error):
        return jsonify({
            'error': 'Too many requests',
            'message': str(error.description) if hasattr(error, 'description') else 'Rate limit exceeded'
        }), 429

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal server error: {error}")
        db.session.rollback()
        return jsonify({
            'error': 'Internal server error',
            'message': 'An unexpected error occurred'
        }), 500

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Catch-all for unhandled exceptions"""
        if isinstance(error, HTTPException):
            return jsonify({'error': error.name, 'message': error.description}), error.code
        logger.error(f"Unhandled exception: {error}", exc_info=True)
        db.session.rollback()
        return jsonify({
            'error': 'Server error',
            'message': 'An unexpected error occurred'
        }), 500

    # Health check
    @app.route('/health')
    def health():
        # Basic health check with database ping
        try:
            db.session.execute(db.text('SELECT 1'))
            db_status = 'connected'
        except Exception as e:
            db.session.rollback()
            db_status = f'error: {str(e)[:50]}'

        return {
            'status': 'healthy' if db_status == 'connected' else 'degraded',
            'version': __version__,
            'database': db_status
        }

    # API info endpoint
    @app.route('/api')
    def api_info():
        return {
            'name': 'Liyaqa API',
            'version': __version__,
            'status': 'running',
            'endpoints': {
                'auth': '/api/auth',
                'platform': '/api/platform',
                'team': '/api/team',
                'organizations': '/api/organizations',
                'clubs': '/api/clubs',
                'locations': '/api/locations',
                'gender_policies': '/api/gender-policies',
                'members': '/api/members',
                'plans': '/api/plans',
                'subscriptions': '/api/subscriptions',
                'invoices': '/api/invoices',
                'shop': '/api/shop',
                'marketing': '/api/marketing',
                'audit': '/api/audit'
            }
        }

    # Initialize background scheduler (only when explicitly enabled)
    if not app.config.get('TESTING') and app.config.get('ENABLE_SCHEDULER'):
        try:
            from liyaqa.services.scheduler_service import init_scheduler
            init_scheduler(app)
            app.logger.info("Background scheduler started")
        except Exception as e:
            app.logger.warning(f"Could not start scheduler: {e}")

    # Seed campaign templates and check for a super admin on startup
    if not app.config.get('TESTING'):
        with app.app_context():
            try:
                from liyaqa.services.marketing import campaign_service
                created = campaign_service.seed_templates()
                if created > 0:
                    app.logger.info(f"Seeded {created} campaign templates")
            except Exception as e:
                db.session.rollback()
                app.logger.warning(f"Could not seed campaign templates: {e}")

            try:
                from liyaqa.models import DBUser, UserRole
                admin_count = DBUser.query.filter_by(role=UserRole.SUPER_ADMIN).count()
                if admin_count == 0:
                    app.logger.warning("No super admin exists! Run: python scripts/create_admin.py")
            except Exception as e:
                app.logger.warning(f"Could not check admin users: {e}")

    return app
