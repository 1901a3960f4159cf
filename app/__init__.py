from flask import Flask, jsonify
from config import Config
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_babel import Babel
from flask import request, has_request_context
from werkzeug.exceptions import HTTPException
import logging

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
babel = Babel()

logger = logging.getLogger(__name__)


def create_app(config_class=Config, **overrides):
    app = Flask(__name__)
    app.config.from_mapping(config_class().model_dump())
    app.config.update(overrides)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    def get_locale():
        if not has_request_context():
            return None  # default locale for the CLI, scheduler and services
        return request.accept_languages.best_match(app.config["LANGUAGES"])

    babel.init_app(app, locale_selector=get_locale)

    from app import models  # noqa: F401

    from app.routes import register_blueprints
    register_blueprints(app)

    from app.cli import register_commands
    register_commands(app)

    _register_error_handlers(app)
    _init_grant_services(app)

    return app


def _init_grant_services(app):
    """Wire the capability-grant services once per application."""
    from app.services.file_gate import FileGate
    from app.services.grants import GrantService
    from app.utils.notifications import NotificationDispatcher
    from app.utils.scheduler import GrantSweeper

    file_gate = FileGate(
        secret=app.config.get('FILE_GATE_SECRET') or app.config['SECRET_KEY'],
        upload_root=app.config['UPLOAD_FOLDER'],
    )
    dispatcher = NotificationDispatcher(
        app,
        run_async=app.config.get('NOTIFICATIONS_ASYNC', True) and not app.config.get('TESTING', False),
        max_workers=app.config.get('NOTIFICATION_WORKERS', 2),
    )
    grants = GrantService(app.config, file_gate=file_gate, dispatcher=dispatcher)
    sweeper = GrantSweeper(
        app,
        grants.sweep,
        interval_hours=app.config['GRANT_SWEEP_INTERVAL_HOURS'],
        audit_retention_days=app.config.get('AUDIT_RETENTION_DAYS'),
    )

    app.extensions['file_gate'] = file_gate
    app.extensions['grants'] = grants
    app.extensions['grant_sweeper'] = sweeper
    app.extensions['notifications'] = dispatcher

    if app.config.get('GRANT_SWEEPER_ENABLED') and not app.config.get('TESTING'):
        sweeper.start()


def _register_error_handlers(app):
    from app.utils.validators import PayloadError
    from app.utils.responses import api_error

    @app.errorhandler(PayloadError)
    def handle_payload_error(e):
        return api_error(e.message, 400)

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'success': False, 'message': e.description, 'data': None}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        logger.exception(f"Unhandled error on {request.method} {request.path}: {e}")
        return jsonify({'success': False, 'message': 'Internal server error', 'data': None}), 500


@login_manager.request_loader
def load_user_from_request(req):
    """Authenticate API calls carrying ``Authorization: Bearer <api token>``."""
    header = req.headers.get('Authorization', '')
    if not header.startswith('Bearer '):
        return None
    token = header[len('Bearer '):].strip()
    if not token:
        return None
    from app.models import User
    return User.query.filter_by(api_token=token, is_active_account=True).first()
