# listingsite/config.py
# Environment-aware configuration for the listing site tenant core

import os
from typing import List, Literal

# Environment detection
ENV: Literal["dev", "staging", "prod"] = os.environ.get("ENV", "dev")  # type: ignore
IS_DEV = (ENV == "dev")
IS_STAGING = (ENV == "staging")
IS_PROD = (ENV == "prod")


def _split_env(name: str, default: str) -> List[str]:
    raw = os.environ.get(name, default)
    return [part.strip().lower() for part in raw.split(",") if part.strip()]


# JWT configuration (tokens are issued by the auth provider, we only verify)
SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"

# Database configuration
# Relative paths resolve against the package directory (see db.py)
DATABASE_PATH = os.environ.get("DATABASE_PATH", "listingsite.db")

# Hostname classification
MARKETING_HOSTNAMES = _split_env("MARKETING_HOSTNAMES", "autolisting.io,www.autolisting.io")
ADMIN_HOSTNAME = os.environ.get("ADMIN_HOSTNAME", "app.autolisting.io").strip().lower()
LOOPBACK_HOSTNAMES = ["localhost", "127.0.0.1"]
# Preview hosts belong to the hosting environment, override per deployment
DEV_PREVIEW_SUFFIXES = _split_env("DEV_PREVIEW_SUFFIXES", ".replit.dev,.repl.co,.replit.app")

# Origins and app links
TRUSTED_ADMIN_ORIGIN = os.environ.get("TRUSTED_ADMIN_ORIGIN", "https://app.autolisting.io").rstrip("/")
APP_DOMAIN = os.environ.get("APP_DOMAIN", TRUSTED_ADMIN_ORIGIN).rstrip("/")
SUPPORT_EMAIL = os.environ.get("SUPPORT_EMAIL", "support@autolisting.io")

# Branding defaults
DEFAULT_PRIMARY_COLOR = "#1e3a5f"
DEFAULT_SECONDARY_COLOR = "#f0f4f8"
DEFAULT_FAVICON = "/favicon.png"

# Content
DEFAULT_LOCALE = os.environ.get("DEFAULT_LOCALE", "en-IE")

# Read-through cache windows (seconds)
CONTENT_CACHE_SECONDS = int(os.environ.get("CONTENT_CACHE_SECONDS", "60"))
FEATURE_FLAG_CACHE_SECONDS = int(os.environ.get("FEATURE_FLAG_CACHE_SECONDS", "300"))

# Billing
BILLING_EXEMPT_ORG_IDS = _split_env("BILLING_EXEMPT_ORG_IDS", "")
EXEMPT_CREDIT_BALANCE = 999999

# CORS origins (expand for staging/prod)
CORS_ORIGINS = [
    "http://localhost:5000",
    "http://127.0.0.1:5000",
]

if IS_STAGING or IS_PROD:
    extra_origins = os.environ.get("CORS_ORIGINS", "")
    if extra_origins:
        CORS_ORIGINS.extend(o.strip() for o in extra_origins.split(",") if o.strip())
    else:
        CORS_ORIGINS.append(TRUSTED_ADMIN_ORIGIN)

print(f"[CONFIG] Environment: {ENV}")
print(f"[CONFIG] Marketing hosts: {', '.join(MARKETING_HOSTNAMES)}")
print(f"[CONFIG] Admin host: {ADMIN_HOSTNAME}")
print(f"[CONFIG] Content cache: {CONTENT_CACHE_SECONDS}s, flag cache: {FEATURE_FLAG_CACHE_SECONDS}s")
