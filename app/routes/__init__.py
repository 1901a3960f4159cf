from app.routes.downloads import bp as downloads_bp
from app.routes.licenses import bp as licenses_bp


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    app.register_blueprint(downloads_bp)
    app.register_blueprint(licenses_bp)
