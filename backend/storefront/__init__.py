# backend/storefront/__init__.py
from flask import Flask, request

from .cache import TTLCache
from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Outbound clients and caches; tests replace these entries with fakes
    from .services.maps_service import MapsClient
    from .services.notification_service import SmsClient
    from .services.payment_gateway import PhonePeClient

    app.extensions["payment_gateway"] = PhonePeClient.from_config(app.config)
    app.extensions["sms_client"] = SmsClient.from_config(app.config)
    app.extensions["maps_client"] = MapsClient.from_config(app.config)
    app.extensions["count_cache"] = TTLCache(app.config["COUNT_CACHE_TTL_SECONDS"])

    # Register blueprints
    from .routes.system import system_bp
    from .routes.cart import cart_bp
    from .routes.coupons import coupons_bp
    from .routes.orders import orders_bp
    from .routes.subscriptions import subscriptions_bp
    from .routes.payments import payments_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(coupons_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(subscriptions_bp)
    app.register_blueprint(payments_bp)

    @app.before_request
    def log_request():
        app.logger.debug("%s %s", request.method, request.path)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config["CORS_ALLOWED_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
