import os
import logging

import click
from flask import Flask, jsonify

from puzzlepass.config import CheckoutSettings, config_by_name
from puzzlepass.extensions import db, migrate, login_manager, limiter


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

    # --- Checkout settings: built once, passed explicitly into services ---
    app.extensions["checkout_settings"] = CheckoutSettings.from_config(app.config)

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from puzzlepass import models  # noqa: F401

    # --- Register blueprints ---
    from puzzlepass.blueprints.callables import callables_bp
    from puzzlepass.blueprints.webhooks import webhooks_bp

    app.register_blueprint(callables_bp)
    app.register_blueprint(webhooks_bp)

    # --- Error handlers ---
    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": {"code": "not-found", "message": "Not found."}}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": {"code": "invalid-argument", "message": "Method not allowed."}}), 405

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": {"code": "internal", "message": "Internal error."}}), 500

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
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
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

    @app.cli.command("purge-expired")
    @click.option("--dry-run", is_flag=True, help="Count expired rows without deleting them.")
    def purge_expired(dry_run):
        """Delete expired rate-limit, checkout-attempt and event-lock rows.

        Run periodically (cron / scheduler):
            flask purge-expired
            flask purge-expired --dry-run
        """
        from datetime import datetime, timezone

        from puzzlepass.models.checkout import CheckoutSession, RateLimit
        from puzzlepass.models.stripe_event import StripeEvent

        now = datetime.now(timezone.utc)
        for model in (RateLimit, CheckoutSession, StripeEvent):
            query = model.query.filter(model.expires_at < now)
            if dry_run:
                click.echo(f"  {model.__tablename__}: {query.count()} expired")
            else:
                deleted = query.delete(synchronize_session=False)
                click.echo(f"  {model.__tablename__}: deleted {deleted}")
        if not dry_run:
            db.session.commit()

    @app.cli.command("revoke-episode")
    @click.option("--uid", required=True, help="User id")
    @click.option("--episode", "episode_id", required=True, help="Episode id")
    def revoke_episode_command(uid, episode_id):
        """Manually remove an episode from a user's unlocked set (support tool)."""
        from puzzlepass.services.entitlement_service import revoke_episode

        if revoke_episode(uid, episode_id):
            click.echo(f"Revoked {episode_id} for {uid}")
        else:
            click.echo(f"{uid} did not have {episode_id} unlocked")

    @app.cli.command("set-subscriber")
    @click.option("--uid", required=True, help="User id")
    @click.option("--off", is_flag=True, help="Clear the subscriber flag instead of setting it.")
    def set_subscriber_command(uid, off):
        """Set or clear a user's subscriber flag."""
        from puzzlepass.services.entitlement_service import set_subscriber

        set_subscriber(uid, not off)
        click.echo(f"Subscriber flag for {uid}: {not off}")

    @app.cli.command("issue-token")
    @click.option("--uid", required=True, help="User id")
    @click.option("--provider", default="password", help="Sign-in provider (e.g. anonymous)")
    def issue_token_command(uid, provider):
        """Mint a development ID token for calling /api/* locally.

        Usage:
            flask issue-token --uid dev-user
            curl -H "Authorization: Bearer <token>" ...
        """
        from puzzlepass.auth import issue_id_token

        click.echo(issue_id_token(uid, provider))

    @app.cli.command("verify-stripe-prices")
    def verify_stripe_prices():
        """Verify each published paid episode's Stripe price exists (same mode as key).

        Run with prod env vars to confirm Live prices; run with test vars for Test mode.
        """
        import stripe as _stripe

        from puzzlepass.models.episode import Episode

        api_key = app.config.get("STRIPE_SECRET_KEY")
        if not api_key:
            click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
            return
        key_mode = "Live" if api_key.startswith("sk_live_") else "Test"
        click.echo(f"Stripe key mode: {key_mode}")
        click.echo("")

        _stripe.api_key = api_key

        episodes = Episode.query.filter_by(
            is_published=True, is_free_preview=False
        ).order_by(Episode.id).all()

        for episode in episodes:
            if not episode.stripe_price_id:
                click.echo(f"  {episode.id}: (no stripe_price_id)")
                continue
            try:
                price = _stripe.Price.retrieve(episode.stripe_price_id)
                livemode = price.get("livemode", "?")
                click.echo(f"  {episode.id}: {episode.stripe_price_id}")
                click.echo(f"    exists=True, livemode={livemode}, active={price.get('active', '?')}")
                if livemode is True and key_mode != "Live":
                    click.echo("    WARNING: This price is Live but your key is Test.")
                elif livemode is False and key_mode == "Live":
                    click.echo("    WARNING: This price is Test but your key is Live.")
            except _stripe.InvalidRequestError as e:
                click.echo(f"  {episode.id}: {episode.stripe_price_id}")
                click.echo(f"    ERROR: {e}")
