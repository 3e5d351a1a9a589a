"""Blueprint registration."""


def register_blueprints(app):
    """Register all route blueprints."""
    from .plans import bp as plans_bp
    from .diagnostics import bp as diagnostics_bp

    app.register_blueprint(plans_bp, url_prefix='/api/meal-plans')
    app.register_blueprint(diagnostics_bp, url_prefix='/api')
