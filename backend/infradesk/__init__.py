# backend/infradesk/__init__.py
import os

from flask import Flask

from .config import Config
from .extensions import db, migrate


MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "migrations")


def create_app(config_object=Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db, directory=MIGRATIONS_DIR)

    from .services.notification_service import init_notifier
    init_notifier(app)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.requests import requests_bp
    from .routes.approvals import approvals_bp
    from .routes.resources import resources_bp
    from .routes.it_tasks import it_tasks_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(requests_bp)
    app.register_blueprint(approvals_bp)
    app.register_blueprint(resources_bp)
    app.register_blueprint(it_tasks_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
