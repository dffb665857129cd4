"""
Runtime settings read from the environment.

A .env file next to the app is honoured for local development.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        return default


# Remote cart API
CART_API_BASE_URL = os.environ.get("CART_API_BASE_URL", "https://api.minymol.com").rstrip("/")

# Firebase Authentication (REST)
FIREBASE_API_KEY = os.environ.get("FIREBASE_API_KEY", "")

# Local store: "file" (on-device directory) or "redis" (Upstash)
CART_STORAGE_BACKEND = os.environ.get("CART_STORAGE_BACKEND", "file").lower()
CART_STORAGE_DIR = os.environ.get("CART_STORAGE_DIR", os.path.join(os.path.expanduser("~"), ".cartsync"))

# Upstash Redis - standard env var names per docs
UPSTASH_REDIS_REST_URL = os.environ.get("UPSTASH_REDIS_REST_URL", "")
UPSTASH_REDIS_REST_TOKEN = os.environ.get("UPSTASH_REDIS_REST_TOKEN", "")

# Gateway dampening (seconds)
CART_CACHE_TTL = _float_env("CART_CACHE_TTL", 180.0)
CART_THROTTLE_INTERVAL = _float_env("CART_THROTTLE_INTERVAL", 0.3)

# Outbox replay attempts before an operation is dropped
CART_SYNC_MAX_RETRIES = _int_env("CART_SYNC_MAX_RETRIES", 3)
