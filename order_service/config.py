"""
config.py — Runtime Configuration

All settings come from environment variables (with development defaults),
read once at import time.
"""

import os

# Datastore
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./orders.db")

# Identity provider (REST)
AUTH_SERVICE_URL = os.environ.get("AUTH_SERVICE_URL", "http://localhost:9999")
AUTH_SERVICE_API_KEY = os.environ.get("AUTH_SERVICE_API_KEY", "")
AUTH_TIMEOUT_SECONDS = float(os.environ.get("AUTH_TIMEOUT_SECONDS", "5.0"))

# Comma separated emails that are registered with the admin role
ADMIN_EMAILS = {
    email.strip().lower() for email in os.environ.get("ADMIN_EMAILS", "").split(",") if email.strip()
}

# Retry executor defaults
RETRY_MAX_ATTEMPTS = int(os.environ.get("RETRY_MAX_ATTEMPTS", "3"))
RETRY_BASE_DELAY_MS = int(os.environ.get("RETRY_BASE_DELAY_MS", "1000"))

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FILE = os.environ.get("LOG_FILE", "order_service.log")

PORT = int(os.environ.get("PORT", "3000"))
