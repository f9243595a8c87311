"""Blueprint registration."""


def register_blueprints(app):
    """Register all route blueprints."""
    from .plans import bp as plans_bp
    from .ingredients import bp as ingredients_bp

    app.register_blueprint(plans_bp, url_prefix='/plans')
    app.register_blueprint(ingredients_bp, url_prefix='/ingredients')
