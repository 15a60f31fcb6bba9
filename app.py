import logging

import click
from flask import Flask
from flask_migrate import Migrate

from config import Config
from models import db
from routes import health_bp, security_bp
from security.orchestrator import SecurityService
from utils.audit import persist_security_event, purge_security_events


def _configure_logging(app):
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    if not logging.getLogger().handlers:
        logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    for name in ("security", "utils"):
        logging.getLogger(name).setLevel(level)


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    _configure_logging(app)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(security_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # One security service per app; all in-memory state lives on it
    sink = persist_security_event if app.config.get("SECURITY_PERSIST_EVENTS") else None
    app.extensions["security_service"] = SecurityService.from_config(app.config, event_sink=sink)

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        # Verdicts and challenges are per request
        resp.headers["Cache-Control"] = "no-store"
        return resp

    register_cli(app)

    return app


def register_cli(app):
    @app.cli.command("purge-security-events")
    @click.option("--days", type=int, default=None, help="Delete persisted events older than this many days.")
    def purge_events(days):
        """Delete persisted security events past the retention window."""
        if days is None:
            days = app.config.get("SECURITY_EVENT_RETENTION_DAYS", 30)
        count = purge_security_events(days)
        click.echo(f"Deleted {count} security events older than {days} days")


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
