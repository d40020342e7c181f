# config.py
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///backoffice.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SESSION_COOKIE_SAMESITE = "Lax"
    SESSION_COOKIE_SECURE = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Vendas e compras
    RECEIVABLE_DUE_DAYS = int(os.getenv("RECEIVABLE_DUE_DAYS", "5"))
    PAYABLE_DUE_DAYS = int(os.getenv("PAYABLE_DUE_DAYS", "7"))
    ALLOW_NEGATIVE_STOCK = _env_bool("ALLOW_NEGATIVE_STOCK", True)

    # Relatórios
    DASHBOARD_HORIZON_DAYS = int(os.getenv("DASHBOARD_HORIZON_DAYS", "7"))
    REPORT_LIMIT = int(os.getenv("REPORT_LIMIT", "10"))

    # Primeira execução
    SEED_ADMIN = _env_bool("SEED_ADMIN", True)
    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@empresa.com.br")
    ADMIN_PASS = os.getenv("ADMIN_PASS", "admin123")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    SEED_ADMIN = False
    LOG_LEVEL = "DEBUG"
