"""
Runtime configuration for the playground service.
Every value can be overridden through the environment or a .env file.
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


# --- Hosted data/auth service (Supabase) ---
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
DATA_SERVICE_TIMEOUT_SECONDS = float(os.getenv("DATA_SERVICE_TIMEOUT_SECONDS", "10"))

# Use the in-memory services instead of Supabase (local development / tests)
USE_MOCK_SERVICES = _flag("USE_MOCK_SERVICES", "false")

# Gate everything except /auth/* behind a signed-in user
REQUIRE_AUTH = _flag("REQUIRE_AUTH", "true")

# --- Editor timing ---
# Editor sessions untouched for this long are closed with their sandbox (0 keeps them until deleted)
EDITOR_IDLE_TIMEOUT_SECONDS = float(os.getenv("EDITOR_IDLE_TIMEOUT_SECONDS", "1800"))
DEBOUNCE_SECONDS = float(os.getenv("DEBOUNCE_SECONDS", "1.0"))
SUBMIT_POLL_TIMEOUT_SECONDS = float(os.getenv("SUBMIT_POLL_TIMEOUT_SECONDS", "2.0"))
SUBMIT_POLL_INTERVAL_SECONDS = float(os.getenv("SUBMIT_POLL_INTERVAL_SECONDS", "0.05"))

# --- Sandbox browser ---
SANDBOX_RENDER_TIMEOUT_MS = int(os.getenv("SANDBOX_RENDER_TIMEOUT_MS", "5000"))
BROWSER_HEADLESS = _flag("BROWSER_HEADLESS", "true")

# --- Logging ---
# Empty LOG_FILE_PATH disables the file handler
LOG_FILE_PATH = os.getenv("LOG_FILE_PATH", "playground_runner.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
