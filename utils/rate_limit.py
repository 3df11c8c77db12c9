"""Rate limiter shared by the app and the routes it decorates."""
import os

from dotenv import load_dotenv
from slowapi import Limiter
from slowapi.util import get_remote_address

load_dotenv()

DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT", "15/minute")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"

# In-memory storage, limits are per process
limiter = Limiter(key_func=get_remote_address, enabled=RATE_LIMIT_ENABLED)
