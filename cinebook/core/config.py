"""
Application configuration and settings
"""
import os
from dotenv import load_dotenv

load_dotenv()

# Database Configuration
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./cinebook.db")

# Redis Configuration (sweeper leader lock + health checks)
REDIS_URL = os.getenv("REDIS_URL", "")
KEY_PREFIX = os.getenv("KEY_PREFIX", "cinebook")
SWEEPER_LOCK_TTL_MS = int(os.getenv("SWEEPER_LOCK_TTL_MS", "25000"))

# Reservation / booking lifecycle
HOLD_TTL_SECONDS = int(os.getenv("HOLD_TTL_SECONDS", "600"))  # 10 minutes default
MAX_SEATS_PER_HOLDER = int(os.getenv("MAX_SEATS_PER_HOLDER", "10"))
PAYMENT_WINDOW_SECONDS = int(os.getenv("PAYMENT_WINDOW_SECONDS", "900"))  # 15 minutes default
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", "30"))
SWEEPER_ENABLED = os.getenv("SWEEPER_ENABLED", "true").lower() in ("1", "true", "yes")
CURRENCY = os.getenv("CURRENCY", "INR")

# Razorpay Configuration
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
PAYMENTS_WEBHOOK_SECRET = os.getenv("PAYMENTS_WEBHOOK_SECRET", "")
PAYMENT_GATEWAY = os.getenv("PAYMENT_GATEWAY", "razorpay")  # razorpay | fallback

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


class Settings:
    PROJECT_NAME: str = "CineBook API"
    VERSION: str = "1.0.0"
    DATABASE_URL = DATABASE_URL
    REDIS_URL = REDIS_URL
    KEY_PREFIX = KEY_PREFIX
    SWEEPER_LOCK_TTL_MS = SWEEPER_LOCK_TTL_MS
    HOLD_TTL_SECONDS = HOLD_TTL_SECONDS
    MAX_SEATS_PER_HOLDER = MAX_SEATS_PER_HOLDER
    PAYMENT_WINDOW_SECONDS = PAYMENT_WINDOW_SECONDS
    SWEEP_INTERVAL_SECONDS = SWEEP_INTERVAL_SECONDS
    SWEEPER_ENABLED = SWEEPER_ENABLED
    CURRENCY = CURRENCY
    RAZORPAY_KEY_ID = RAZORPAY_KEY_ID
    RAZORPAY_KEY_SECRET = RAZORPAY_KEY_SECRET
    PAYMENTS_WEBHOOK_SECRET = PAYMENTS_WEBHOOK_SECRET
    PAYMENT_GATEWAY = PAYMENT_GATEWAY
    LOG_LEVEL = LOG_LEVEL

settings = Settings()
