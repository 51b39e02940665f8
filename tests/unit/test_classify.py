"""Maker / taker classification by placement geometry and activation ranges."""

import pytest

from privacy_settlement.core.enums import BucketSide, OrderType
from privacy_settlement.domain.events import RangeActivated
from privacy_settlement.reconciliation.classify import classify_by_geometry, match_ranges


class TestGeometry:
    def test_sell_at_current_tick_is_taker(self):
        assert classify_by_geometry(BucketSide.SELL, 600, 600) is OrderType.TAKER

    def test_sell_one_above_current_is_maker(self):
        assert classify_by_geometry(BucketSide.SELL, 601, 600) is OrderType.MAKER

    def test_sell_below_current_is_taker(self):
        assert classify_by_geometry(BucketSide.SELL, -60, 600) is OrderType.TAKER

    def test_buy_above_current_is_taker(self):
        assert classify_by_geometry(BucketSide.BUY, 660, 600) is OrderType.TAKER

    def test_buy_at_current_tick_is_maker(self):
        assert classify_by_geometry(BucketSide.BUY, 600, 600) is OrderType.MAKER

    @pytest.mark.parametrize("tick", [-887220, -60, 0, 540])
    def test_buy_at_or_below_current_is_maker(self, tick):
        assert classify_by_geometry(BucketSide.BUY, tick, 600) is OrderType.MAKER


def _range(from_tick: int, to_tick: int, block: int) -> RangeActivated:
    return RangeActivated(
        pool_id="0x" + "ab" * 32, block_number=block, from_tick=from_tick, to_tick=to_tick
    )


class TestMatchRanges:
    def test_no_ranges(self):
        assert match_ranges(60, []) is None

    def test_bounds_are_inclusive(self):
        ranges = [_range(0, 120, 10)]
        assert match_ranges(0, ranges) == 10
        assert match_ranges(120, ranges) == 10
        assert match_ranges(180, ranges) is None

    def test_descending_range_is_normalised(self):
        assert match_ranges(60, [_range(120, 0, 7)]) == 7

    def test_most_recent_matching_block_wins(self):
        ranges = [_range(0, 600, 50), _range(-60, 120, 90), _range(300, 900, 120)]
        assert match_ranges(60, ranges) == 90
