# --- meatcart/__init__.py ---
import logging

from flask import Flask, jsonify

from .config import Config
from .extensions import db, jwt, cors, migrate

logger = logging.getLogger(__name__)


def create_app(config_class=Config):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)
    config_class.init_app(app)

    # module loggers are children of app.logger ("meatcart")
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Init extensions
    db.init_app(app)
    jwt.init_app(app)
    cors.init_app(app, resources={r"/api/*": {"origins": "*"}})
    migrate.init_app(app, db)

    from .errors import register_error_handlers
    register_error_handlers(app)

    # Register blueprints
    from .auth import bp as auth_bp; app.register_blueprint(auth_bp)
    from .cart import bp as cart_bp; app.register_blueprint(cart_bp)
    from .coupon import bp as coupon_bp; app.register_blueprint(coupon_bp)
    from .order import bp as order_bp; app.register_blueprint(order_bp)
    from .delivery import bp as delivery_bp; app.register_blueprint(delivery_bp)
    from .notification import bp as notification_bp; app.register_blueprint(notification_bp)

    from .cli import register_cli
    register_cli(app)

    @app.get("/")
    def health():
        return jsonify(success=True, message="API running")

    logger.debug("blueprints: %s", sorted(app.blueprints.keys()))
    for rule in app.url_map.iter_rules():
        logger.debug("%s %s", sorted(rule.methods), rule.rule)

    with app.app_context():
        from . import model  # noqa: F401
        db.create_all()

    return app
