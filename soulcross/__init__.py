import os
import logging

import click
from flask import Flask, jsonify

from soulcross.config import config_by_name
from soulcross.errors import PaywallError
from soulcross.extensions import db, migrate, limiter, store


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    store.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from soulcross import models  # noqa: F401

    # --- Register blueprints ---
    from soulcross.blueprints.api import api_bp
    from soulcross.blueprints.webhooks import webhooks_bp

    app.register_blueprint(api_bp)
    app.register_blueprint(webhooks_bp)

    # --- Error handlers ---
    @app.errorhandler(PaywallError)
    def paywall_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found", "code": "not_found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "code": "method_not_allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests", "code": "rate_limited"}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Server error", "code": "server_error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON only, nothing to load or embed
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("generate-pending-content")
    @click.option("--limit", default=100, show_default=True, help="Max readings to retry.")
    def generate_pending_content(limit):
        """Generate full content for paid readings still marked pending.

        Picks up readings whose payment was reconciled but whose content
        stage failed or never ran (crash between the two stages).

        Usage:
            flask generate-pending-content
            flask generate-pending-content --limit 20
        """
        from soulcross.services.reading_service import retry_pending_content

        attempted, completed = retry_pending_content(limit=limit)
        click.echo(f"Pending readings: {attempted}, completed: {completed}")
        if attempted and completed < attempted:
            click.echo(f"  {attempted - completed} still pending, see reading.generation_failed events")

    @app.cli.command("show-events")
    @click.option("--reading-id", default=None, help="Only events for this reading.")
    @click.option("--order-id", default=None, help="Only events for this order.")
    @click.option("--limit", default=50, show_default=True, help="Max events to show.")
    def show_events(reading_id, order_id, limit):
        """Print the paywall audit trail, oldest first.

        Usage:
            flask show-events
            flask show-events --reading-id 3f2c... --limit 20
        """
        from soulcross.services.audit_service import list_events

        events = list_events(
            reading_request_id=reading_id, order_id=order_id, limit=limit
        )
        if not events:
            click.echo("No events.")
            return

        for event in events:
            row = event.to_dict()
            click.echo(
                f"{row['id']:>6}  {row['createdAt'] or '-'}  {row['type']:<30} "
                f"reading={row['readingRequestId'] or '-'} "
                f"order={row['orderId'] or '-'} {row['payload']}"
            )
