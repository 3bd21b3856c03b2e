# backend/hive/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate, enable_sqlite_savepoints



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    with app.app_context():
        enable_sqlite_savepoints(db.engine)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Gateway client and mailer are built once from config; tests replace them
    from .services.gateway_service import EXTENSION_KEY as GATEWAY_KEY, GatewayConfig, PaystackClient
    from .services.notification_service import EXTENSION_KEY as NOTIFIER_KEY, EmailNotifier

    app.extensions[GATEWAY_KEY] = PaystackClient(GatewayConfig.from_mapping(app.config))
    app.extensions[NOTIFIER_KEY] = EmailNotifier.from_mapping(app.config)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.products import products_bp
    from .routes.checkout import checkout_bp
    from .routes.transactions import transactions_bp
    from .routes.orders import orders_bp
    from .routes.auth import auth_bp, users_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(users_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin == app.config.get("FRONTEND_URL"):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
