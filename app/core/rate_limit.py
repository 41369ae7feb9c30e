"""Rate limiting for the scan API (slowapi).

Requests are keyed by client address; the trigger endpoint carries its own
per-route limit because every accepted call starts a provider fan-out.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

TRIGGER_RATE_LIMIT = "10/minute"

limiter = Limiter(key_func=get_remote_address)
