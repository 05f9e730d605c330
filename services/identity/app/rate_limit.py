"""
Global slowapi rate limiter.

Imported by auth/router.py for per-endpoint limits.  Mounted onto app.state in
main.py so slowapi middleware can find it.

Storage: in-memory by default (single replica).  Point RATE_LIMIT_STORAGE_URI
at a shared backend (e.g. redis://...) when running several replicas.
RATE_LIMIT_ENABLED=false turns every limit off (tests, local load runs).
"""
import os

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
    enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() not in ("0", "false", "no"),
)
