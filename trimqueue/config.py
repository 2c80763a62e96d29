import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./trimqueue.db")

# Canonical civil timezone for display and calendar-day math
SHOP_TIMEZONE = os.getenv("SHOP_TIMEZONE", "Asia/Kolkata")

# Minimum gap between two bookings of the same employee
BOOKING_BUFFER_MINUTES = int(os.getenv("BOOKING_BUFFER_MINUTES", "5"))

# Cascade notification heuristics
# A customer is told about an earlier slot only if the wait improved by at least this much
RESCHEDULE_NOTIFY_MIN_IMPROVEMENT_MINUTES = int(
    os.getenv("RESCHEDULE_NOTIFY_MIN_IMPROVEMENT_MINUTES", "5")
)
# Crossing below this wait (from above) triggers a "get ready" notification
WAIT_CRITICAL_THRESHOLD_MINUTES = int(os.getenv("WAIT_CRITICAL_THRESHOLD_MINUTES", "10"))

# Missed-booking handling
# auto_start: booked -> in_service when join_time passes (no automatic "missed")
# check_in: booked stays booked until the shop checks in; cancelled as missed after the grace window
MISSED_BOOKING_POLICY = os.getenv("MISSED_BOOKING_POLICY", "auto_start").lower()
MISSED_GRACE_MINUTES = int(os.getenv("MISSED_GRACE_MINUTES", "10"))

# Status reconciliation loop (in-process)
STATUS_TICKER_ENABLED = os.getenv("STATUS_TICKER_ENABLED", "true").lower() == "true"
STATUS_TICK_INTERVAL_SECONDS = int(os.getenv("STATUS_TICK_INTERVAL_SECONDS", "60"))

# Lock contention / deadlock retries for scheduling transactions
TRANSIENT_RETRY_ATTEMPTS = int(os.getenv("TRANSIENT_RETRY_ATTEMPTS", "3"))

# Web Push delivery with VAPID application server keys
VAPID_PRIVATE_KEY = os.getenv("VAPID_PRIVATE_KEY", "")
VAPID_PUBLIC_KEY = os.getenv("VAPID_PUBLIC_KEY", "")
VAPID_SUBJECT = os.getenv("VAPID_SUBJECT", "mailto:admin@trimqueue.local")
PUSH_REQUEST_TIMEOUT_SECONDS = float(os.getenv("PUSH_REQUEST_TIMEOUT_SECONDS", "10"))
PUSH_TTL_SECONDS = int(os.getenv("PUSH_TTL_SECONDS", "3600"))

# Frontend paths used in notification payloads
CUSTOMER_DASHBOARD_URL = os.getenv("CUSTOMER_DASHBOARD_URL", "/userdashboard")
SHOP_DASHBOARD_URL = os.getenv("SHOP_DASHBOARD_URL", "/shopdashboard")
