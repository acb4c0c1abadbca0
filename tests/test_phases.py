"""Tests for round phases and the audience window."""

from __future__ import annotations

import pytest

from data.models import Phase
from orchestration.phases import in_audience_window, phase_plan, resolve_phase


class TestResolvePhase:
    @pytest.mark.parametrize("max_rounds", range(1, 21))
    def test_every_round_of_every_length(self, max_rounds):
        for seq in range(1, max_rounds + 1):
            phase = resolve_phase(seq, max_rounds)
            if seq <= 2:
                assert phase is Phase.OPENING
            elif seq >= max_rounds and max_rounds > 2:
                assert phase is Phase.CLOSING
            else:
                assert phase is Phase.REBUTTAL

    def test_single_round_is_opening(self):
        assert resolve_phase(1, 1) is Phase.OPENING

    def test_two_rounds_have_no_closing(self):
        assert phase_plan(2) == [Phase.OPENING, Phase.OPENING]

    def test_three_rounds_close_on_third(self):
        assert phase_plan(3) == [Phase.OPENING, Phase.OPENING, Phase.CLOSING]

    def test_four_round_plan(self):
        assert phase_plan(4) == [
            Phase.OPENING,
            Phase.OPENING,
            Phase.REBUTTAL,
            Phase.CLOSING,
        ]

    @pytest.mark.parametrize("seq", [0, 5, -1])
    def test_out_of_range_raises(self, seq):
        with pytest.raises(ValueError):
            resolve_phase(seq, 4)


class TestAudienceWindow:
    def test_bounds_are_inclusive(self):
        assert in_audience_window(3, (3, 6))
        assert in_audience_window(6, (3, 6))
        assert not in_audience_window(2, (3, 6))
        assert not in_audience_window(7, (3, 6))

    def test_closing_round_can_fall_inside_window(self):
        assert resolve_phase(4, 4) is Phase.CLOSING
        assert in_audience_window(4, (3, 6))
