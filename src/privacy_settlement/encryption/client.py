"""HTTP client for the encryption / threshold-decryption service.

The service runs the FHE tooling server-side and exposes one JSON
endpoint.  Every request is ``POST {service_url}`` with an ``action``:

========== ================================== ==============================
action     request                            success response
========== ================================== ==============================
initialize ``{chainId, userAddress}``         ``{sessionId, permit, expiresAt}``
encrypt    ``{data: {sessionId, value, type}}`` ``{ciphertext}``
unseal     ``{data: {sessionId, ciphertext, type}}`` ``{value}``
getSession ``{data: {sessionId}}``            ``{valid, expiresAt}``
========== ================================== ==============================

Failures come back as ``{success: false, error}`` with no partial data.
Errors are classified once, here: HTTP 401 means the server dropped the
session (``SessionExpired``); decryption errors whose text says the
result is not ready yet become ``NotYetMaterialized``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from privacy_settlement.core.enums import FheType
from privacy_settlement.core.errors import (
    DecryptionError,
    EncryptionServiceError,
    NotYetMaterialized,
    SessionExpired,
)
from privacy_settlement.core.ids import from_epoch_ms
from privacy_settlement.core.interfaces import SessionGrant
from privacy_settlement.core.models import EncryptedHandle, Permit

logger = logging.getLogger(__name__)

_NOT_MATERIALIZED_MARKERS = (
    "not ready",
    "not yet",
    "pending",
    "not found in storage",
    "no result",
    "still processing",
    "sealoutput not available",
)


def is_not_materialized(message: str) -> bool:
    """True when an unseal error means the upstream has not finished."""
    text = message.lower()
    return any(marker in text for marker in _NOT_MATERIALIZED_MARKERS)


def _to_int(value: Any) -> int:
    """Decimal or 0x-hex string (or int / bool) to int."""
    if isinstance(value, (bool, int)):
        return int(value)
    text = str(value).strip()
    return int(text, 16) if text.lower().startswith("0x") else int(text)


def _error_message(payload: dict[str, Any]) -> str:
    error = payload.get("error")
    if isinstance(error, dict):
        return str(error.get("message") or error)
    if error:
        return str(error)
    return "request failed"


class HttpEncryptionClient:
    """``IEncryptionClient`` over the service's JSON endpoint.

    Parameters
    ----------
    service_url:
        Full URL of the endpoint, e.g. ``https://app.example/api/fhe``.
    timeout:
        HTTP request timeout in seconds.
    transport:
        Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        service_url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._service_url = service_url
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # -- Lifecycle -----------------------------------------------------------

    async def open(self) -> None:
        """Create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> HttpEncryptionClient:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # -- Actions -------------------------------------------------------------

    async def initialize(self, chain_id: int, user_address: str) -> SessionGrant:
        payload = await self._post(
            "initialize",
            {"action": "initialize", "chainId": chain_id, "userAddress": user_address},
        )
        permit = payload.get("permit") or {}
        try:
            return SessionGrant(
                session_id=str(payload["sessionId"]),
                permit=Permit(
                    issuer=permit.get("issuer") or "",
                    chain_id=int(permit.get("chainId") or chain_id),
                    verifying_contract=permit.get("verifyingContract") or "",
                    public_key=permit.get("publicKey") or "",
                ),
                expires_at=from_epoch_ms(payload["expiresAt"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise EncryptionServiceError(
                "initialize", f"malformed response: {exc}"
            ) from exc

    async def encrypt(
        self, session_id: str, value: int | bool, fhe_type: FheType
    ) -> EncryptedHandle:
        wire_value: Any = value if fhe_type is FheType.BOOL else str(int(value))
        payload = await self._post(
            "encrypt",
            {
                "action": "encrypt",
                "chainId": 0,
                "data": {"sessionId": session_id, "value": wire_value, "type": fhe_type.value},
            },
        )
        try:
            return EncryptedHandle(ciphertext=_to_int(payload["ciphertext"]), type=fhe_type)
        except (KeyError, TypeError, ValueError) as exc:
            raise EncryptionServiceError("encrypt", f"malformed response: {exc}") from exc

    async def unseal(self, session_id: str, handle: EncryptedHandle) -> int:
        payload = await self._post(
            "unseal",
            {
                "action": "unseal",
                "chainId": 0,
                "data": {
                    "sessionId": session_id,
                    "ciphertext": hex(handle.ciphertext),
                    "type": handle.type.value,
                },
            },
        )
        value = payload.get("value")
        if value is None:
            raise DecryptionError("unseal", "response carried no value")
        try:
            return _to_int(value)
        except (TypeError, ValueError) as exc:
            raise DecryptionError("unseal", f"malformed value {value!r}") from exc

    async def get_session(self, session_id: str) -> datetime | None:
        """Return the server-side expiry, or ``None`` if the session is gone."""
        try:
            payload = await self._post(
                "getSession",
                {"action": "getSession", "chainId": 0, "data": {"sessionId": session_id}},
            )
        except (EncryptionServiceError, SessionExpired):
            return None
        if not payload.get("valid"):
            return None
        return from_epoch_ms(payload["expiresAt"])

    # -- Transport -----------------------------------------------------------

    async def _post(self, action: str, body: dict[str, Any]) -> dict[str, Any]:
        if self._client is None:
            await self.open()
        assert self._client is not None

        try:
            resp = await self._client.post(self._service_url, json=body)
        except httpx.TransportError as exc:
            logger.warning("Encryption service unreachable (%s): %s", action, exc)
            raise self._classify(action, f"transport error: {exc}") from exc

        try:
            payload = resp.json()
        except ValueError:
            payload = {"success": False, "error": resp.text[:200] or f"HTTP {resp.status_code}"}

        if resp.status_code == 401:
            raise SessionExpired()

        if not isinstance(payload, dict):
            raise EncryptionServiceError(action, f"unexpected response type {type(payload).__name__}")

        if resp.status_code >= 400 or not payload.get("success", False):
            message = _error_message(payload)
            logger.debug("Encryption service %s rejected: %s", action, message)
            raise self._classify(action, message)

        return payload

    @staticmethod
    def _classify(action: str, message: str) -> EncryptionServiceError:
        if action != "unseal":
            return EncryptionServiceError(action, message)
        if is_not_materialized(message):
            return NotYetMaterialized(action, message)
        return DecryptionError(action, message)
