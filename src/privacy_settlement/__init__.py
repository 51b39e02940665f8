"""Order-settlement reconciliation and privacy-session management."""

__version__ = "0.1.0"
