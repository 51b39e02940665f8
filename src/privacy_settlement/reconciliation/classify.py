"""Maker / taker classification.

Two independent sources:

* **Placement geometry** — at deposit time a SELL above the current tick
  rests above market (maker); a SELL at or below it fills immediately
  against current liquidity (taker).  BUY is the mirror image: above the
  current tick is a momentum buy (taker), at or below is a resting
  limit buy (maker).
* **Activation ranges** — the newer engine emits ``RangeActivated`` for
  the tick range a swap pushed through.  A claimable position whose tick
  lies inside one of its pool's ranges was filled as a taker.
"""

from __future__ import annotations

from typing import Iterable

from privacy_settlement.core.enums import BucketSide, OrderType
from privacy_settlement.domain.events import RangeActivated


def classify_by_geometry(side: BucketSide, order_tick: int, current_tick: int) -> OrderType:
    above = order_tick > current_tick
    if side is BucketSide.SELL:
        return OrderType.MAKER if above else OrderType.TAKER
    return OrderType.TAKER if above else OrderType.MAKER


def match_ranges(tick: int, ranges: Iterable[RangeActivated]) -> int | None:
    """Block of the most recent range covering ``tick``, or ``None``."""
    latest: int | None = None
    for rng in ranges:
        if rng.covers(tick) and (latest is None or rng.block_number > latest):
            latest = rng.block_number
    return latest
