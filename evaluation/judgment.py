"""Verdict arithmetic and the post-debate judgment report.

Everything here is pure: the finalizer and the CLI fetch rows from the
database and pass them in.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from data.database import DebateDatabase
from data.models import (
    DebateRecord,
    RoundScoreRow,
    Stance,
    TranscriptEntry,
    Winner,
)

DEFAULT_DRAW_THRESHOLD = 0.1
FOUL_PENALTY = 2
_FOUL_MARKER = re.compile(r"FOUL:\s*(\w+)")


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------

@dataclass
class Verdict:
    """Final outcome of a debate as computed from judge scores."""

    debate_id: int
    winner: Winner
    final_scores: dict[str, float]
    judge_scores: dict[str, float]

    def to_dict(self) -> dict[str, Any]:
        return {
            "debate_id": self.debate_id,
            "winner": self.winner.value,
            "final_scores": self.final_scores,
            "judge_scores": self.judge_scores,
        }


@dataclass
class RoundSummary:
    round_id: int
    sequence: int
    pro_score: float = 0.0
    con_score: float = 0.0
    pro_fouls: list[str] = field(default_factory=list)
    con_fouls: list[str] = field(default_factory=list)


@dataclass
class FoulRecord:
    agent_id: str
    round_id: int
    foul_type: str


@dataclass
class JudgmentReport:
    """Verdict plus the per-round story behind it."""

    verdict: Verdict
    rounds: list[RoundSummary]
    key_turning_round: int | None
    winning_arguments: dict[str, list[str]]
    foul_records: list[FoulRecord]
    summary: str

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.verdict.to_dict(),
            "rounds": [vars(r) for r in self.rounds],
            "key_turning_round": self.key_turning_round,
            "winning_arguments": self.winning_arguments,
            "foul_records": [vars(f) for f in self.foul_records],
            "summary": self.summary,
        }


# ---------------------------------------------------------------------------
# Verdict
# ---------------------------------------------------------------------------

def determine_winner(
    pro_score: float, con_score: float, threshold: float = DEFAULT_DRAW_THRESHOLD
) -> Winner:
    """Draw when the gap is below *threshold*, otherwise the higher side."""
    if abs(pro_score - con_score) < threshold:
        return Winner.DRAW
    return Winner.PRO if pro_score > con_score else Winner.CON


def compute_verdict(
    debate_id: int,
    judge_totals: dict[Stance, float],
    judge_weight: float,
    threshold: float = DEFAULT_DRAW_THRESHOLD,
) -> Verdict:
    """Weight the judge totals and pick the winner.

    Audience votes do not enter the final score here.
    """
    pro_total = judge_totals.get(Stance.PRO, 0.0)
    con_total = judge_totals.get(Stance.CON, 0.0)
    pro_final = pro_total * judge_weight
    con_final = con_total * judge_weight
    return Verdict(
        debate_id=debate_id,
        winner=determine_winner(pro_final, con_final, threshold),
        final_scores={"pro": pro_final, "con": con_final},
        judge_scores={"pro": pro_total, "con": con_total},
    )


def judge_totals(rows: list[RoundScoreRow]) -> dict[Stance, float]:
    """Sum of the four dimensions per stance over all rounds."""
    totals = {Stance.PRO: 0.0, Stance.CON: 0.0}
    for row in rows:
        totals[row.stance] += row.total
    return totals


# ---------------------------------------------------------------------------
# Report pieces
# ---------------------------------------------------------------------------

def parse_fouls(comment: str | None) -> list[str]:
    """Foul types recorded as ``FOUL: <type>`` markers in a judge comment."""
    return _FOUL_MARKER.findall(comment or "")


def apply_foul_penalty(base_score: float, foul_count: int) -> float:
    """Deduct two points per foul, never going below 1."""
    return max(1.0, base_score - foul_count * FOUL_PENALTY)


def summarize_rounds(rows: list[RoundScoreRow]) -> list[RoundSummary]:
    by_round: dict[int, RoundSummary] = {}
    for row in rows:
        summary = by_round.setdefault(
            row.round_id, RoundSummary(round_id=row.round_id, sequence=row.sequence)
        )
        fouls = parse_fouls(row.comment)
        if row.stance is Stance.PRO:
            summary.pro_score += row.total
            summary.pro_fouls.extend(fouls)
        else:
            summary.con_score += row.total
            summary.con_fouls.extend(fouls)
    return sorted(by_round.values(), key=lambda s: s.sequence)


def find_key_turning_round(rounds: list[RoundSummary]) -> int | None:
    """First round where the cumulative leader changes.

    Without a lead change, the round with the widest cumulative gap. A tie
    counts as a con lead.
    """
    if not rounds:
        return None
    history: list[tuple[int, str, float]] = []
    pro = con = 0.0
    for r in rounds:
        pro += r.pro_score
        con += r.con_score
        history.append((r.sequence, "pro" if pro > con else "con", abs(pro - con)))

    for prev, curr in zip(history, history[1:]):
        if prev[1] != curr[1]:
            return curr[0]
    return max(history, key=lambda h: h[2])[0]


def collect_fouls(rows: list[RoundScoreRow]) -> list[FoulRecord]:
    return [
        FoulRecord(agent_id=row.agent_id, round_id=row.round_id, foul_type=foul)
        for row in rows
        for foul in parse_fouls(row.comment)
    ]


def extract_winning_arguments(
    transcript: list[TranscriptEntry], winner: Winner, limit: int = 3
) -> dict[str, list[str]]:
    """Openings of the winner's speeches, one per round, first *limit* rounds."""
    result: dict[str, list[str]] = {"pro": [], "con": []}
    if winner is Winner.DRAW:
        return result
    seen_rounds: set[int] = set()
    for entry in transcript:
        if entry.stance is None or entry.stance.value != winner.value:
            continue
        if entry.round_id in seen_rounds:
            continue
        seen_rounds.add(entry.round_id)
        result[winner.value].append(entry.content[:100] + "...")
        if len(result[winner.value]) >= limit:
            break
    return result


def summary_line(verdict: Verdict) -> str:
    pro = verdict.final_scores["pro"]
    con = verdict.final_scores["con"]
    if verdict.winner is Winner.DRAW:
        return f"Evenly matched at {pro:.1f} : {con:.1f}; the debate is a draw."
    side = "PRO" if verdict.winner is Winner.PRO else "CON"
    return f"{side} wins {pro:.1f} : {con:.1f}, a lead of {abs(pro - con):.1f} points."


def build_report(
    debate: DebateRecord,
    rows: list[RoundScoreRow],
    transcript: list[TranscriptEntry],
    threshold: float = DEFAULT_DRAW_THRESHOLD,
) -> JudgmentReport:
    """Assemble the full judgment report from persisted rows."""
    assert debate.id is not None
    verdict = compute_verdict(debate.id, judge_totals(rows), debate.judge_weight, threshold)
    rounds = summarize_rounds(rows)
    return JudgmentReport(
        verdict=verdict,
        rounds=rounds,
        key_turning_round=find_key_turning_round(rounds),
        winning_arguments=extract_winning_arguments(transcript, verdict.winner),
        foul_records=collect_fouls(rows),
        summary=summary_line(verdict),
    )


async def load_report(
    db: DebateDatabase, debate_id: int, threshold: float = DEFAULT_DRAW_THRESHOLD
) -> JudgmentReport | None:
    """Fetch a debate's rows and build its report; ``None`` if it does not exist."""
    debate = await db.get_debate(debate_id)
    if debate is None:
        return None
    rows = await db.get_round_scores(debate_id)
    transcript = await db.get_transcript(debate_id)
    return build_report(debate, rows, transcript, threshold)
