import os
import logging
from decimal import Decimal


def _decimal_env(name: str, default: str) -> Decimal:
    return Decimal(os.getenv(name, default))


ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Tax and invoicing
DEFAULT_GST_RATE = _decimal_env("DEFAULT_GST_RATE", "18")
SUPPLIER_STATE = os.getenv("SUPPLIER_STATE", "Maharashtra")
INVOICE_PREFIX = os.getenv("INVOICE_PREFIX", "PI")

# Stock alerts: flag when total OUT exceeds total IN by this factor
STOCK_OVERAGE_FACTOR = _decimal_env("STOCK_OVERAGE_FACTOR", "1.2")

# Request anomaly detection (quantity vs. recent average)
ANOMALY_THRESHOLD = _decimal_env("ANOMALY_THRESHOLD", "1.3")
ANOMALY_WINDOW_DAYS = int(os.getenv("ANOMALY_WINDOW_DAYS", "7"))

# Notification outbox
OUTBOX_MAX_ATTEMPTS = int(os.getenv("OUTBOX_MAX_ATTEMPTS", "5"))

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def get_cors_origins():
    """Get CORS origins from environment or use defaults for development"""
    origins_env = os.getenv("CORS_ORIGINS", "")
    if origins_env:
        return [o.strip() for o in origins_env.split(",") if o.strip()]
    return [
        "http://127.0.0.1:3000",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ]


def configure_logging(level: str | None = None) -> None:
    """Install a single stream handler on the root logger (idempotent)."""
    root = logging.getLogger()
    root.setLevel(level or LOG_LEVEL)
    if any(getattr(h, "_sitesupply", False) for h in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._sitesupply = True
    root.addHandler(handler)
