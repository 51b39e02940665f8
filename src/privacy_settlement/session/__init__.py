"""Privacy-session lifecycle: single-flight authorization, expiry, bounded decrypt retry."""

from .manager import SessionManager
from .retry import RetryPolicy

__all__ = ["RetryPolicy", "SessionManager"]
