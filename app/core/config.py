import os

# Database Configuration
# Uses default credentials for local Docker Compose setup
DB_URL = os.getenv("DATABASE_URL", "postgresql+asyncpg://user:password@db:5432/community_connect")

# Application Metadata
PROJECT_NAME = "Community Connect Registration Service"
VERSION = "1.0.0"

# Payment Gateway (Stripe)
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "usd")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:10200")

# Live notification channel. Empty disables the broadcast (records are still persisted).
REDIS_URL = os.getenv("REDIS_URL", "")

# Outbound email
SMTP_HOST = os.getenv("SMTP_HOST", "smtp.mailtrap.io")
SMTP_PORT = int(os.getenv("SMTP_PORT", 2525))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
EMAIL_FROM = os.getenv("EMAIL_FROM", "Community Connect <no-reply@communityconnect.local>")

# Outbox Poller Configuration (side-effect retries + abandoned checkout sweep)
POLLING_INTERVAL = int(os.getenv("POLLING_INTERVAL", 5)) # Poller wakes up every N seconds
MAX_ATTEMPTS = int(os.getenv("MAX_ATTEMPTS", 5)) # Max retries for a side effect
BATCH_SIZE = int(os.getenv("BATCH_SIZE", 50)) # How many rows to fetch per poll
OUTBOX_CLAIM_LEASE_SECONDS = int(os.getenv("OUTBOX_CLAIM_LEASE_SECONDS", 120)) # A claimed row is left alone this long; keep above the SMTP timeout
PENDING_ORDER_TTL_HOURS = int(os.getenv("PENDING_ORDER_TTL_HOURS", 24)) # Abandoned checkout cutoff
