from __future__ import annotations

import logging

import click
from flask import Flask, jsonify

from app.core.auth import auth_bp
from app.core.config import Config, VerificationSettings
from app.core.errors import TramiteError
from app.core.extensions import db, login_manager, migrate
from app.core.mailer import build_code_mailer
from app.core.models import User, seed_demo_data
from app.core.notifications import LogNotificationSink
from app.tramites import tramites_bp

logger = logging.getLogger(__name__)


def create_app(config_object: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))
    logging.getLogger("app").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    app.extensions["verification_settings"] = VerificationSettings.from_config(app.config)
    app.extensions["code_mailer"] = build_code_mailer(app.config)
    app.extensions["notification_sink"] = LogNotificationSink()

    app.register_blueprint(auth_bp)
    app.register_blueprint(tramites_bp)

    register_cli(app)
    register_error_handlers(app)
    return app


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(TramiteError)
    def tramite_error(error: TramiteError):
        logger.warning("Operacion rechazada (%s): %s", error.code, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(401)
    def unauthorized(_error):
        return jsonify({"error_code": "UNAUTHORIZED", "message": "Autenticacion requerida"}), 401

    @app.errorhandler(404)
    def not_found(_error):
        return jsonify({"error_code": "NOT_FOUND", "message": "Recurso no encontrado"}), 404


def register_cli(app: Flask) -> None:
    @app.cli.command("seed-demo")
    @click.option("--reset", is_flag=True, help="Delete existing data before seed.")
    def seed_demo(reset: bool) -> None:
        """Seed demo areas, users, roles and documents."""
        if reset:
            db.drop_all()
            db.create_all()
        if not User.query.first():
            seed_demo_data(db.session)
            click.echo("Demo data seeded.")
        else:
            click.echo("Seed skipped: existing users found.")

    @app.cli.command("codigos-estadisticas")
    def codigos_estadisticas() -> None:
        """Print verification-code statistics."""
        from app.tramites.verificacion import verification_statistics

        for key, value in verification_statistics().items():
            click.echo(f"{key}={value}")


@login_manager.user_loader
def load_user(user_id: str) -> User | None:
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized_json():
    return jsonify({"error_code": "UNAUTHORIZED", "message": "Autenticacion requerida"}), 401
