"""Custom exception hierarchy for the settlement subsystem."""

from __future__ import annotations

from typing import Any


class SettlementError(Exception):
    """Base exception for all settlement subsystem errors."""


# --- Configuration ---
class ConfigError(SettlementError):
    """Invalid or missing configuration."""


class SafetyGateError(ConfigError):
    """Safety gate not satisfied (e.g., engine address unset)."""


# --- Session ---
class SessionError(SettlementError):
    """Privacy-session lifecycle error."""


class NoSession(SessionError):
    """Encrypt/decrypt attempted without a ready session. Not retried."""

    def __init__(self, message: str = "No valid FHE session") -> None:
        super().__init__(message)


class SessionExpired(SessionError):
    """Session passed its expiry; the user must re-authorize."""

    def __init__(self, expires_at: Any = None) -> None:
        self.expires_at = expires_at
        super().__init__(f"FHE session expired at {expires_at}; please re-authorize")


class AuthorizationFailed(SessionError):
    """The authorization handshake did not produce a session."""


# --- Encryption service ---
class EncryptionServiceError(SettlementError):
    """The encryption service rejected a request or was unreachable."""

    def __init__(self, action: str, message: str) -> None:
        self.action = action
        super().__init__(f"{action} failed: {message}")


class DecryptionError(EncryptionServiceError):
    """Decryption of a ciphertext handle failed."""


class NotYetMaterialized(DecryptionError):
    """The threshold-decryption side has not finished with this handle yet."""


class DecryptionRetriesExhausted(DecryptionError):
    """Decryption kept failing after the configured number of attempts."""

    def __init__(self, attempts: int, last_error: Exception | None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        self.try_again_shortly = isinstance(last_error, NotYetMaterialized)
        hint = (
            "value is still being decrypted, try again shortly"
            if self.try_again_shortly
            else f"last error: {last_error}"
        )
        super().__init__("unseal", f"gave up after {attempts} attempts ({hint})")


# --- Ledger ---
class LedgerError(SettlementError):
    """Ledger read error."""


class TransientIO(LedgerError):
    """A log query or network read failed. Callers retry the whole fetch."""

    def __init__(self, query: str, cause: BaseException | None = None) -> None:
        self.query = query
        self.cause = cause
        super().__init__(f"ledger query '{query}' failed: {cause}")


class ProbeUnavailable(LedgerError):
    """A single position read failed. Degrades that position only."""

    def __init__(self, key: Any, cause: BaseException | None = None) -> None:
        self.key = key
        self.cause = cause
        super().__init__(f"position read failed for {key}: {cause}")


# --- Settlement engine writes ---
class EngineRevert(SettlementError):
    """A write call was rejected by the settlement engine. Never retried."""

    def __init__(self, call: str, key: Any, reason: str) -> None:
        self.call = call
        self.key = key
        self.reason = reason
        super().__init__(f"{call} reverted for {key}: {reason}")


class InvalidOrderError(SettlementError):
    """Write request failed local validation before reaching the engine."""
