import os


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Config:
    SECRET_KEY = os.getenv("FLASK_SECRET_KEY", "dev-secret")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # LOCAL mode uses SQLite
    LOCAL_DB = os.getenv("LOCAL_DB", "1") == "1"

    if os.getenv("DATABASE_URL"):
        SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL")
    elif LOCAL_DB:
        SQLALCHEMY_DATABASE_URI = "sqlite:///local.db"
    else:
        DB_USER = os.getenv("DB_USER", "")
        DB_PASS = os.getenv("DB_PASS", "")
        DB_NAME = os.getenv("DB_NAME", "")
        CLOUD_SQL_CONNECTION_NAME = os.getenv("CLOUD_SQL_CONNECTION_NAME", "")
        SQLALCHEMY_DATABASE_URI = (
            f"postgresql+psycopg2://{DB_USER}:{DB_PASS}@/"
            f"{DB_NAME}?host=/cloudsql/{CLOUD_SQL_CONNECTION_NAME}"
        )

    # accounts
    ALLOWED_EMAIL_DOMAIN = os.getenv("ALLOWED_EMAIL_DOMAIN", "mlrit.ac.in")
    AUTH_COOKIE_NAME = os.getenv("AUTH_COOKIE_NAME", "bites_session")
    AUTH_SESSION_HOURS = int(os.getenv("AUTH_SESSION_HOURS", "72"))
    AUTH_COOKIE_SECURE = _flag("AUTH_COOKIE_SECURE", "0")

    # orders
    DELIVERY_FEE = os.getenv("DELIVERY_FEE", "10")
    ESTIMATED_DELIVERY_MINUTES = int(os.getenv("ESTIMATED_DELIVERY_MINUTES", "30"))

    # payments (Stripe REST API)
    CURRENCY = os.getenv("CURRENCY", "inr")
    PAYMENT_API_BASE = os.getenv("PAYMENT_API_BASE", "https://api.stripe.com/v1")
    PAYMENT_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_TIMEOUT_SECONDS", "10"))
    WEBHOOK_TOLERANCE_SECONDS = int(os.getenv("WEBHOOK_TOLERANCE_SECONDS", "300"))

    # Firestore order event log
    EVENT_LOG_ENABLED = _flag("EVENT_LOG_ENABLED", "0")

    # uploaded food images, relative to the app root
    IMAGE_UPLOAD_DIR = os.getenv("IMAGE_UPLOAD_DIR", os.path.join("static", "images"))
