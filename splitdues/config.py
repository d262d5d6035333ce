import os
from dotenv import load_dotenv

load_dotenv()


def _split_csv(value: str):
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")

    # Identity is established upstream; the proxy forwards the token identifier.
    IDENTITY_HEADER = os.environ.get("IDENTITY_HEADER", "X-Identity-Token")
    IDENTITY_NAME_HEADER = os.environ.get("IDENTITY_NAME_HEADER", "X-Identity-Name")
    IDENTITY_EMAIL_HEADER = os.environ.get("IDENTITY_EMAIL_HEADER", "X-Identity-Email")
    IDENTITY_PICTURE_HEADER = os.environ.get("IDENTITY_PICTURE_HEADER", "X-Identity-Picture")

    CORS_ORIGINS = _split_csv(os.environ.get("CORS_ORIGINS", "http://localhost:3000"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Database config (defaults allow local run without crashing)
    DB_HOST = os.environ.get("DB_HOST", "localhost")
    DB_PORT = int(os.environ.get("DB_PORT", 3306))
    DB_USER = os.environ.get("DB_USER", "root")
    DB_PASSWORD = os.environ.get("DB_PASSWORD", "")
    DB_NAME = os.environ.get("DB_NAME", "splitdues")
    DB_POOL_SIZE = int(os.environ.get("DB_POOL_SIZE", 10))


config = Config()
