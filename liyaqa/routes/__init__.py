"""
Liyaqa - Routes
API endpoint registration
"""
from flask import Flask


def register_routes(app: Flask):
    """Register all API blueprints"""

    from liyaqa.routes.auth import auth_bp
    from liyaqa.routes.platform import platform_bp
    from liyaqa.routes.team import team_bp
    from liyaqa.routes.organizations import (
        organizations_bp, clubs_bp, locations_bp, gender_policies_bp,
    )
    from liyaqa.routes.members import members_bp, plans_bp, subscriptions_bp
    from liyaqa.routes.invoices import invoices_bp
    from liyaqa.routes.shop import shop_bp
    from liyaqa.routes.marketing import marketing_bp
    from liyaqa.routes.audit import audit_bp

    # Register with /api prefix
    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(platform_bp, url_prefix='/api/platform')
    app.register_blueprint(team_bp, url_prefix='/api/team')
    app.register_blueprint(organizations_bp, url_prefix='/api/organizations')
    app.register_blueprint(clubs_bp, url_prefix='/api/clubs')
    app.register_blueprint(locations_bp, url_prefix='/api/locations')
    app.register_blueprint(gender_policies_bp, url_prefix='/api/gender-policies')
    app.register_blueprint(members_bp, url_prefix='/api/members')
    app.register_blueprint(plans_bp, url_prefix='/api/plans')
    app.register_blueprint(subscriptions_bp, url_prefix='/api/subscriptions')
    app.register_blueprint(invoices_bp, url_prefix='/api/invoices')
    app.register_blueprint(shop_bp, url_prefix='/api/shop')
    app.register_blueprint(marketing_bp, url_prefix='/api/marketing')
    app.register_blueprint(audit_bp, url_prefix='/api/audit')
