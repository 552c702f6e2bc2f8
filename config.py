import os

from dotenv import load_dotenv

load_dotenv()


class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- Redis (Celery broker + pending job index) ---
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

    # --- Telnyx (SMS) ---
    TELNYX_API_KEY = os.environ.get("TELNYX_API_KEY")
    TELNYX_PUBLIC_KEY = os.environ.get("TELNYX_PUBLIC_KEY")
    TELNYX_FROM_NUMBER = os.environ.get("TELNYX_FROM_NUMBER")
    TRANSPORT_TIMEOUT = float(os.environ.get("TRANSPORT_TIMEOUT", "10"))

    # --- Admin ---
    ADMIN_API_KEY = os.environ.get("ADMIN_API_KEY")

    # --- Hebcal (calendar / zmanim upstream) ---
    HEBCAL_API_BASE_URL = os.environ.get("HEBCAL_API_BASE_URL", "https://www.hebcal.com/hebcal")
    UPSTREAM_TIMEOUT = float(os.environ.get("UPSTREAM_TIMEOUT", "10"))

    # --- Defaults ---
    DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "Asia/Jerusalem")
    DEFAULT_LOCATION = os.environ.get("DEFAULT_LOCATION", "Jerusalem")
    DEFAULT_COUNTRY_CODE = os.environ.get("DEFAULT_COUNTRY_CODE", "972")

    # --- Scheduling ---
    DISPATCH_INTERVAL_SECONDS = float(os.environ.get("DISPATCH_INTERVAL_SECONDS", "60"))
    DEDUP_WINDOW_SECONDS = int(os.environ.get("DEDUP_WINDOW_SECONDS", "60"))
    CACHE_RETENTION_DAYS = int(os.environ.get("CACHE_RETENTION_DAYS", "30"))

    # --- Delivery ---
    DELIVERY_MAX_ATTEMPTS = int(os.environ.get("DELIVERY_MAX_ATTEMPTS", "3"))
    DELIVERY_BACKOFF_SECONDS = float(os.environ.get("DELIVERY_BACKOFF_SECONDS", "2"))
    WORKER_CONCURRENCY = int(os.environ.get("WORKER_CONCURRENCY", "10"))
    WORKER_RATE_LIMIT = os.environ.get("WORKER_RATE_LIMIT", "100/m")

    # --- Logging ---
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


settings = Settings()
