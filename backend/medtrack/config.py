# medtrack/config.py
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./medtrack.db")

JWT_SECRET = os.getenv("JWT_SECRET", "secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
SESSION_DURATION_HOURS = int(os.getenv("SESSION_DURATION_HOURS", "24"))

# calendar day boundary for the daily dose counter
APP_TIMEZONE = os.getenv("APP_TIMEZONE", "Asia/Jakarta")

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
IMAGE_MAX_SIDE = int(os.getenv("IMAGE_MAX_SIDE", "800"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

DEFAULT_HISTORY_DAYS = int(os.getenv("DEFAULT_HISTORY_DAYS", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CREATE_TABLES_ON_STARTUP = os.getenv("CREATE_TABLES_ON_STARTUP", "true").lower() == "true"

ROLE_ADMIN = 1
ROLE_PATIENT = 2

# per client address, on /api only
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
API_RATE_LIMIT = os.getenv("API_RATE_LIMIT", "100 per 15 minutes")
