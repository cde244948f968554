"""Tests for chunk planning."""

import pytest

from common.constants import BACKEND_ATTACHMENT_CAP_BYTES, MEGABYTE
from stash.chunk_planner import effective_chunk_size, plan_chunks
from stash.exceptions import ConfigurationError


class TestEffectiveChunkSize:

    def test_configured_size_below_cap_is_kept(self):
        assert effective_chunk_size(4 * MEGABYTE, 7 * MEGABYTE) == 4 * MEGABYTE

    def test_configured_size_above_cap_is_capped(self):
        assert effective_chunk_size(25 * MEGABYTE, BACKEND_ATTACHMENT_CAP_BYTES) == BACKEND_ATTACHMENT_CAP_BYTES

    @pytest.mark.parametrize("configured,cap", [(1, 1), (100, 7), (7, 100), (5000, 4096)])
    def test_never_exceeds_cap(self, configured, cap):
        size = effective_chunk_size(configured, cap)
        assert size == min(configured, cap)
        assert size <= cap

    @pytest.mark.parametrize("configured,cap", [(0, 10), (-1, 10), (10, 0), (10, -5)])
    def test_non_positive_values_rejected(self, configured, cap):
        with pytest.raises(ConfigurationError):
            effective_chunk_size(configured, cap)


class TestPlanChunks:

    def test_twenty_megabytes_with_ten_megabyte_setting_and_seven_megabyte_cap(self):
        plan = plan_chunks(20 * MEGABYTE, 10 * MEGABYTE, 7 * MEGABYTE)

        sizes = [r.size for r in plan]
        assert sizes == [7 * MEGABYTE, 7 * MEGABYTE, 6 * MEGABYTE]
        assert len(plan) == 3

    def test_ranges_are_contiguous_and_cover_file(self):
        plan = plan_chunks(10_001, 1000, 4096)
        ranges = list(plan)

        assert [r.index for r in ranges] == list(range(len(ranges)))
        assert ranges[0].start == 0
        assert ranges[-1].end == 10_001
        for previous, current in zip(ranges, ranges[1:]):
            assert previous.end == current.start
        assert sum(r.size for r in ranges) == 10_001

    def test_exact_multiple_has_no_trailing_empty_chunk(self):
        plan = plan_chunks(3000, 1000, 4096)
        assert [r.size for r in plan] == [1000, 1000, 1000]

    def test_file_smaller_than_chunk(self):
        ranges = list(plan_chunks(10, 1000, 4096))
        assert len(ranges) == 1
        assert (ranges[0].start, ranges[0].end) == (0, 10)

    def test_empty_file_has_no_chunks(self):
        plan = plan_chunks(0, 1000, 4096)
        assert len(plan) == 0
        assert list(plan) == []

    def test_plan_is_restartable(self):
        plan = plan_chunks(2500, 1000, 4096)
        assert list(plan) == list(plan)

    def test_negative_size_rejected(self):
        with pytest.raises(ConfigurationError):
            plan_chunks(-1, 1000, 4096)
