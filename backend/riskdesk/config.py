import os

LOG_LEVEL = os.getenv("RISKDESK_LOG_LEVEL", "INFO").upper()

# --- User directory (account status lookup) ---
# When unset, the API only enriches profiles if the caller supplies users.
DIRECTORY_URL = os.getenv("RISKDESK_DIRECTORY_URL", "").rstrip("/")
DIRECTORY_TOKEN = os.getenv("RISKDESK_DIRECTORY_TOKEN", "")
DIRECTORY_TIMEOUT = float(os.getenv("RISKDESK_DIRECTORY_TIMEOUT", "3.0"))

# Snapshot size the dashboard fetches before calling the engine. Informational
# only; the engine never truncates its input.
SNAPSHOT_LIMIT = int(os.getenv("RISKDESK_SNAPSHOT_LIMIT", "200"))

FRONTEND_URL = os.getenv("RISKDESK_FRONTEND_URL", "")
