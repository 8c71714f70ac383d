# backend/caja/__init__.py
import logging

from flask import Flask, jsonify

from .config import Config
from .errors import CajaError
from .extensions import db, migrate


def create_app(config_object=Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.registers import registers_bp
    from .routes.sessions import sessions_bp
    from .routes.movements import movements_bp
    from .routes.sales import sales_bp
    from .routes.credit_notes import credit_notes_bp
    from .routes.receivables import receivables_bp
    from .routes.audit import audit_bp

    app.register_blueprint(registers_bp)
    app.register_blueprint(sessions_bp)
    app.register_blueprint(movements_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(credit_notes_bp)
    app.register_blueprint(receivables_bp)
    app.register_blueprint(audit_bp)

    @app.errorhandler(CajaError)
    def handle_caja_error(error: CajaError):
        if error.status_code >= 500:
            app.logger.error("Caja error %s: %s", error.kind, error)
        return jsonify(error.to_dict()), error.status_code

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
