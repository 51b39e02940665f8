"""Point reads of position state, degraded per position on failure.

A single bad read must not hide every other legitimate claim, so
``SafeStateProbe`` turns a failed read into ``None`` ("not claimable"),
logs it, and records a ``ProbeUnavailable`` for the run report.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from privacy_settlement.core.errors import ProbeUnavailable
from privacy_settlement.core.interfaces import IStateProbe
from privacy_settlement.core.models import PositionKey, PositionSnapshot

logger = logging.getLogger(__name__)

ProbeFn = Callable[[PositionKey], Awaitable["PositionSnapshot | None"]]


class SafeStateProbe:
    """Binds an ``IStateProbe`` to one user and never raises per position.

    Instances are callables usable as the reconciler's ``probe``.
    """

    def __init__(self, probe: IStateProbe, user: str) -> None:
        self._probe = probe
        self._user = user
        self.failures: list[ProbeUnavailable] = []
        self.reads = 0

    async def __call__(self, key: PositionKey) -> PositionSnapshot | None:
        return await self.try_read(key)

    async def try_read(self, key: PositionKey) -> PositionSnapshot | None:
        self.reads += 1
        try:
            return await self._probe.read_position(key.pool_id, self._user, key.tick, key.side)
        except Exception as exc:
            failure = ProbeUnavailable(key, exc)
            self.failures.append(failure)
            logger.warning("Failed to read position %s: %s", key, exc)
            return None
