import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'shiori.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    IMPORT_MAX_BYTES = int(os.environ.get("IMPORT_MAX_BYTES", "5000000"))
    AUDIT_LOG_PAGE_LIMIT = int(os.environ.get("AUDIT_LOG_PAGE_LIMIT", "50"))
    TOKEN_PREFIX = os.environ.get("TOKEN_PREFIX", "bkmk")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "WARNING"
