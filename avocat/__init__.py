import logging

import stripe
from flask import Flask
from flask_cors import CORS

from .config import Config
from .extensions import limiter
from .services import build_services

__version__ = "1.0.0"


def create_app(overrides=None, *, mongo_client=None, completion_provider=None):
    """Application factory. `mongo_client` and `completion_provider` replace the real backends."""
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    if not app.debug and not app.testing:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    # Configure CORS
    CORS(app)

    # Configure rate limiting
    limiter.init_app(app)

    # Configure Stripe
    stripe.api_key = app.config["STRIPE_SECRET_KEY"]
    if not stripe.api_key:
        app.logger.warning("Stripe API key not set. Stripe functionality will not work.")
    if not app.config["STRIPE_WEBHOOK_SECRET"]:
        app.logger.warning("Stripe webhook secret not set. Webhooks will be rejected.")

    app.extensions["avocat"] = build_services(
        app.config,
        mongo_client=mongo_client,
        completion_provider=completion_provider,
    )

    from . import admin, cli, routes
    app.register_blueprint(routes.bp)
    app.register_blueprint(admin.bp)
    app.register_blueprint(cli.bp)

    return app
