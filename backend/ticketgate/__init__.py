import logging
import os

import click
from flask import Flask, jsonify
from sqlalchemy import text

from ticketgate.config import Config
from ticketgate.container import EXTENSION_KEY, build_services
from ticketgate.extensions import db, migrate, cors
from ticketgate.segments.segment_payment_verify import payments_bp
from ticketgate.segments.segment_tickets import tickets_bp


def create_app(overrides=None, *, providers=None, notifier=None):
    app = Flask(__name__)

    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    env = (app.config.get("ENV") or "dev").strip().lower()

    # Production safety checks
    if env in ("prod", "production"):
        for key in ("SECRET_KEY", "TICKET_SECRET_KEY"):
            secret = (app.config.get(key) or "").strip()
            if not secret or len(secret) < 16 or secret.startswith(("change-me", "dev-")):
                raise RuntimeError(f"{key} must be set and at least 16 chars in production")
        if not (os.getenv("DATABASE_URL") or "").strip():
            raise RuntimeError("DATABASE_URL must be set in production")

    level = getattr(logging, str(app.config.get("LOG_LEVEL") or "INFO").upper(), logging.INFO)
    app.logger.setLevel(level)

    # Ensure instance dir exists for SQLite paths
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and ":memory:" not in app.config["SQLALCHEMY_DATABASE_URI"]:
        os.makedirs(app.config["INSTANCE_DIR"], exist_ok=True)

    # CORS configuration
    raw_origins = (app.config.get("ALLOWED_ORIGINS") or "*").strip()
    origins = [o.strip() for o in raw_origins.split(",") if o.strip()] or ["*"]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}, r"/ticket/*": {"origins": origins}})

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db)

    app.extensions[EXTENSION_KEY] = build_services(app.config, providers=providers, notifier=notifier)

    app.register_blueprint(payments_bp)
    app.register_blueprint(tickets_bp)

    # Health check
    @app.get("/api/health")
    def health():
        db_state = "ok"
        try:
            db.session.execute(text("SELECT 1"))
        except Exception:
            db_state = "fail"
        return jsonify({
            "ok": True,
            "service": "ticketgate",
            "env": env,
            "db": db_state,
        })

    @app.cli.command("create-db")
    def create_db_command():
        """Create all tables from models (local development only)."""
        db.create_all()
        click.echo("db.create_all() executed")

    @app.cli.command("confirm-registrations")
    @click.option("--limit", default=200, show_default=True, help="Paid invoices to inspect.")
    def confirm_registrations_command(limit):
        """Retry registration confirmation for paid invoices."""
        from ticketgate.jobs.registration_sweeper import confirm_paid_registrations

        summary = confirm_paid_registrations(app.extensions[EXTENSION_KEY].store, limit=limit)
        click.echo(f"checked={summary['checked']} confirmed={summary['confirmed']} missing={summary['missing']}")

    minutes = int(app.config.get("REGISTRATION_SWEEP_MINUTES") or 0)
    if minutes > 0 and not app.config.get("TESTING"):
        from ticketgate.jobs.registration_sweeper import start_registration_sweeper

        start_registration_sweeper(app, app.extensions[EXTENSION_KEY].store, minutes)
        app.logger.info("Registration sweep scheduled every %s minutes", minutes)

    return app
