import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./consultorio.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Shared secret for the scheduler calling the queue-drain endpoint.
# When unset the endpoint is open (development only).
CRON_SECRET = os.getenv("CRON_SECRET")

# Frontend base URL for links in emails
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Consultorio <noreply@consultorio.app>")

# Exchange rate source (Bs per 1 unit of currency)
RATES_API_URL = os.getenv("RATES_API_URL")
# Static rates, e.g. "USD=36.5,EUR=39.1" - takes precedence over RATES_API_URL
RATES_FIXED = os.getenv("RATES_FIXED")
RATES_TIMEOUT_SECONDS = float(os.getenv("RATES_TIMEOUT_SECONDS", "10"))

# Report delivery queue
REPORT_EMAIL_DELAY_MINUTES = int(os.getenv("REPORT_EMAIL_DELAY_MINUTES", "10"))
DELIVERY_BATCH_SIZE = int(os.getenv("DELIVERY_BATCH_SIZE", "50"))
DELIVERY_MAX_ATTEMPTS = int(os.getenv("DELIVERY_MAX_ATTEMPTS", "3"))
DELIVERY_STALE_CLAIM_MINUTES = int(os.getenv("DELIVERY_STALE_CLAIM_MINUTES", "15"))
DELIVERY_POLL_SECONDS = int(os.getenv("DELIVERY_POLL_SECONDS", "60"))
