"""Round phases and the audience participation window.

Both are pure functions of the round sequence so the executor, the CLI and
the tests all agree on what a given round is.
"""

from __future__ import annotations

from data.models import Phase

OPENING_ROUNDS = 2


def resolve_phase(sequence: int, max_rounds: int) -> Phase:
    """Return the phase of round *sequence* in a debate of *max_rounds*.

    Rounds 1 and 2 are always openings, so with ``max_rounds <= 2`` there is
    no closing round. Otherwise the last round closes and everything in
    between is rebuttal.
    """
    if sequence < 1 or sequence > max_rounds:
        raise ValueError(f"sequence {sequence} outside 1..{max_rounds}")
    if sequence <= OPENING_ROUNDS:
        return Phase.OPENING
    if sequence >= max_rounds and max_rounds > OPENING_ROUNDS:
        return Phase.CLOSING
    return Phase.REBUTTAL


def phase_plan(max_rounds: int) -> list[Phase]:
    """Phases for every round of a debate, in order."""
    return [resolve_phase(seq, max_rounds) for seq in range(1, max_rounds + 1)]


def in_audience_window(sequence: int, window: tuple[int, int]) -> bool:
    """Whether audience members may ask to speak in round *sequence*.

    The window is inclusive and independent of the phase, so a closing round
    inside it is eligible.
    """
    start, end = window
    return start <= sequence <= end
