import os
from datetime import timedelta
from decimal import Decimal


class Config:
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False
    ENV = os.getenv("FLASK_ENV", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-secret-change-me")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(days=1)

    # order pricing
    DELIVERY_FEE = Decimal(os.getenv("DELIVERY_FEE", "50"))
    FREE_DELIVERY_THRESHOLD = Decimal(os.getenv("FREE_DELIVERY_THRESHOLD", "500"))
    TAX_RATE = Decimal(os.getenv("TAX_RATE", "0"))

    # delivery workflow
    ESTIMATED_DELIVERY_MINUTES = int(os.getenv("ESTIMATED_DELIVERY_MINUTES", "45"))
    AVERAGE_DELIVERY_WINDOW = int(os.getenv("AVERAGE_DELIVERY_WINDOW", "10"))

    @staticmethod
    def init_app(app):
        if not os.getenv("DATABASE_URL"):
            os.makedirs(app.instance_path, exist_ok=True)
            app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{os.path.join(app.instance_path, 'app.db')}"
        else:
            app.config["SQLALCHEMY_DATABASE_URI"] = os.getenv("DATABASE_URL")


class TestConfig(Config):
    TESTING = True
    LOG_LEVEL = "DEBUG"
    JWT_SECRET_KEY = "test-secret-key-with-enough-length-for-hs256"

    @staticmethod
    def init_app(app):
        app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite://"
