"""
Global slowapi rate limiter.

Imported by ingestion/router.py for per-endpoint limits. Mounted onto app.state
in main.py so slowapi middleware can find it.

Storage: Redis (same instance as the summary cache). Disabled, with in-memory
storage, when ENV_NAME=development.
"""
import os

from slowapi import Limiter
from slowapi.util import get_remote_address

_development = os.getenv("ENV_NAME", "development") == "development"

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://" if _development else os.getenv("REDIS_URL", "redis://localhost:6379/0"),
    enabled=not _development,
)

# Per-client budgets; a tracker flushes progress about 4 times a minute.
VIEW_LIMIT = "60/minute"
PROGRESS_LIMIT = "120/minute"
COMPLETE_LIMIT = "60/minute"
