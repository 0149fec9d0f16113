from __future__ import annotations

from datetime import timedelta

import click
from flask import Flask, jsonify

from app.core.config import Config
from app.core.extensions import configure_sqlite_locking, db, migrate
from app.core.models import OrganizationUnit, seed_demo_data, utcnow
from app.registry import registry_bp


def create_app(config_object: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    configure_logging(app)
    db.init_app(app)
    migrate.init_app(app, db)
    with app.app_context():
        configure_sqlite_locking(db.engine)

    app.register_blueprint(registry_bp)

    register_cli(app)
    register_routes(app)
    return app


def configure_logging(app: Flask) -> None:
    # app.registry.* module loggers propagate to the Flask "app" logger and its default handler
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))


def register_routes(app: Flask) -> None:
    @app.get("/health")
    def health():
        return jsonify({"status": "ok"})

    @app.errorhandler(404)
    def not_found(_error):
        return jsonify({"error": "not_found", "message": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(_error):
        return jsonify({"error": "method_not_allowed", "message": "Method not allowed"}), 405


def register_cli(app: Flask) -> None:
    @app.cli.command("seed-demo")
    @click.option("--reset", is_flag=True, help="Delete existing data before seed.")
    def seed_demo(reset: bool) -> None:
        """Seed demo units, actors and registration configs."""
        if reset:
            db.drop_all()
            db.create_all()
        if not OrganizationUnit.query.first():
            seed_demo_data(db.session)
            click.echo("Demo data seeded.")
        else:
            click.echo("Seed skipped: existing organization units found.")

    @app.cli.command("routes-flag-expired")
    @click.option("--days", type=int, default=None, help="Age in days after which a pending route is stale.")
    def routes_flag_expired(days: int | None) -> None:
        """Flag stale pending routing steps as expired (advisory only)."""
        from app.registry.workflow import flag_expired_steps

        threshold = days if days is not None else app.config["REGISTRY_STALE_ROUTE_DAYS"]
        if threshold < 0:
            raise click.BadParameter("days must be >= 0", param_hint="--days")
        flagged = flag_expired_steps(utcnow() - timedelta(days=threshold))
        click.echo(f"Flagged {flagged} pending routes older than {threshold} days.")
