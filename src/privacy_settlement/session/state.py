"""Explicit session state values.

The manager holds exactly one of these at a time::

    Idle ──authorize──▶ Authorizing(future) ──ok──▶ Ready(session)
                              │                         │ (expiry, lazy)
                              └──fail──▶ Error(reason)  ▼
                                   └──authorize──▶   expired ──clear──▶ Idle

Concurrent callers only ever observe one of these values; the shared
future inside ``Authorizing`` is what single-flight coalescing hands out.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Union

from privacy_settlement.core.enums import SessionStatus
from privacy_settlement.core.models import FheSession


@dataclass(frozen=True)
class Idle:
    status = SessionStatus.IDLE


@dataclass(frozen=True)
class Authorizing:
    identity: str
    future: asyncio.Future[FheSession] = field(compare=False)

    status = SessionStatus.INITIALIZING


@dataclass(frozen=True)
class Ready:
    session: FheSession

    status = SessionStatus.READY

    @property
    def identity(self) -> str:
        return self.session.identity


@dataclass(frozen=True)
class Error:
    identity: str
    reason: BaseException = field(compare=False)

    status = SessionStatus.ERROR


SessionState = Union[Idle, Authorizing, Ready, Error]


def identity_key(chain_id: int, address: str) -> str:
    """Canonical identity string: one session per ``(chain, address)``."""
    return f"{chain_id}:{address.lower()}"
