import logging

from flask import Flask, g, jsonify, request, session
from flask_migrate import Migrate

from config import Config
from database import db

migrate = Migrate()

# Blueprints that do not use the session user (GitHub calls them directly)
login_exempt_blueprints = {"webhook"}


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
    )
    app.logger.setLevel(level)


def create_app(overrides: dict | None = None) -> Flask:
    """Build the application.

    ``overrides`` is applied on top of :class:`config.Config`; tests use it to
    point at a temporary database and to run background jobs inline.
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    _configure_logging(app)
    db.init_app(app)

    # Models import should be after initializing db
    from models.cached_file import CachedFile  # noqa: F401
    from models.comment import Comment  # noqa: F401
    from models.issue import Issue  # noqa: F401
    from models.pull_request import PullRequest  # noqa: F401
    from models.repository import Repository  # noqa: F401
    from models.sync_log import SyncLog  # noqa: F401
    from models.user import User
    from models.webhook_delivery import WebhookDelivery  # noqa: F401

    # Create flask command lines to update the db based on the model
    # Usage:
    # Create a migration script in ./migrations/versions
    # > flask db migrate -m "Add cache columns"
    # Run the update
    # > flask db upgrade
    migrate.init_app(app, db)

    from routes.github import github_bp
    from routes.items import items_bp
    from routes.repositories import repositories_bp
    from routes.webhook import webhook_bp
    from services.task_runner import BackgroundTaskRunner

    app.register_blueprint(webhook_bp)
    app.register_blueprint(github_bp)
    app.register_blueprint(repositories_bp)
    app.register_blueprint(items_bp)
    BackgroundTaskRunner(app)

    @app.before_request
    def require_login():
        """Load the session user into ``g.user``.

        Every ``/api`` route needs a logged in user; the webhook blueprint is
        authenticated by its signature instead.
        """
        g.user = None
        if request.blueprint in login_exempt_blueprints:
            return None
        user_id = session.get("user_id")
        if user_id:
            g.user = db.session.get(User, user_id)
        if g.user is None and request.path.startswith("/api"):
            return jsonify({"success": False, "message": "Authentication required."}), 401
        return None

    @app.route("/health")
    def health():
        return jsonify({"success": True})

    app.logger.debug("RepoMirror app created")
    return app
