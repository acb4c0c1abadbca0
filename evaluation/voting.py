"""Post-debate analytics over audience votes.

Runs on demand against persisted votes and never feeds back into the
verdict stored by the finalizer. Note the two draw rules: the verdict
uses a raw-point gap of 0.1, the blended result here a gap of 5 on a
0-100 scale.
"""

from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from typing import Any

from data.database import DebateDatabase
from data.models import AgentRecord, AgentRole, Stance, TranscriptEntry, VoteRecord, Winner
from evaluation.classifiers import BlindSpots, detect_blind_spots
from evaluation.judgment import determine_winner
from evaluation.validators import AUDIENCE_TYPES

VOTE_WEIGHT = 10
DIMENSIONS = 4
MAX_DIMENSION_SCORE = 10
REFERENCE_ROUNDS = 10
BLENDED_DRAW_THRESHOLD = 5.0


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------

@dataclass
class VotingAggregation:
    pro_votes: int = 0
    con_votes: int = 0
    draw_votes: int = 0
    total_audience: int = 0
    pro_percentage: float = 0.0
    con_percentage: float = 0.0
    draw_percentage: float = 0.0
    weighted_score: dict[str, float] = field(default_factory=lambda: {"pro": 0.0, "con": 0.0})

    @property
    def total_votes(self) -> int:
        return self.pro_votes + self.con_votes + self.draw_votes


@dataclass
class TypeTally:
    pro: int = 0
    con: int = 0
    draw: int = 0

    @property
    def total(self) -> int:
        return self.pro + self.con + self.draw

    def add(self, vote: Winner) -> None:
        setattr(self, vote.value, getattr(self, vote.value) + 1)


@dataclass
class PerspectiveDivergence:
    highest_divergence_round: int
    by_type: dict[str, TypeTally]
    overall_divergence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "highest_divergence_round": self.highest_divergence_round,
            **{
                f"{t.replace('-', '_')}_votes": {**vars(tally), "total": tally.total}
                for t, tally in self.by_type.items()
            },
            "overall_divergence": self.overall_divergence,
        }


@dataclass
class WeightedResult:
    pro: float
    con: float
    winner: Winner


@dataclass
class VotingAnalysis:
    aggregation: VotingAggregation
    divergence: PerspectiveDivergence
    blind_spots: BlindSpots

    def to_dict(self) -> dict[str, Any]:
        return {
            "aggregation": vars(self.aggregation),
            "divergence": self.divergence.to_dict(),
            "blind_spots": self.blind_spots.to_dict(),
        }


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

def _audience(agents: list[AgentRecord]) -> dict[str, AgentRecord]:
    return {a.id: a for a in agents if a.role is AgentRole.AUDIENCE}


def aggregate_votes(votes: list[VoteRecord], agents: list[AgentRecord]) -> VotingAggregation:
    """Count votes cast by the debate's audience members."""
    audience = _audience(agents)
    result = VotingAggregation(total_audience=len(audience))
    for vote in votes:
        if vote.agent_id not in audience:
            continue
        if vote.vote is Winner.PRO:
            result.pro_votes += 1
        elif vote.vote is Winner.CON:
            result.con_votes += 1
        else:
            result.draw_votes += 1

    total = result.total_votes
    if total:
        result.pro_percentage = result.pro_votes / total
        result.con_percentage = result.con_votes / total
        result.draw_percentage = result.draw_votes / total
    result.weighted_score = {
        "pro": float(result.pro_votes * VOTE_WEIGHT),
        "con": float(result.con_votes * VOTE_WEIGHT),
    }
    return result


def calculate_weighted_result(
    judge_totals: dict[Stance, float],
    aggregation: VotingAggregation,
    judge_weight: float,
    audience_weight: float,
    rounds: int = REFERENCE_ROUNDS,
) -> WeightedResult:
    """Blend normalised judge totals with vote shares on a 0-100 scale."""
    max_judge = DIMENSIONS * MAX_DIMENSION_SCORE * rounds
    pro_judge = judge_totals.get(Stance.PRO, 0.0) / max_judge * 100
    con_judge = judge_totals.get(Stance.CON, 0.0) / max_judge * 100
    pro = pro_judge * judge_weight + aggregation.pro_percentage * 100 * audience_weight
    con = con_judge * judge_weight + aggregation.con_percentage * 100 * audience_weight
    return WeightedResult(pro=pro, con=con, winner=determine_winner(pro, con, BLENDED_DRAW_THRESHOLD))


def analyze_perspective_divergence(
    votes: list[VoteRecord],
    agents: list[AgentRecord],
    first_round: int = 1,
) -> PerspectiveDivergence:
    """Spread of the pro-vote share across audience types.

    ``overall_divergence`` is the population standard deviation of the
    per-type pro fractions; it is 0 with fewer than two voting types.
    """
    audience = _audience(agents)
    by_type: dict[str, TypeTally] = {t: TypeTally() for t in AUDIENCE_TYPES}
    for vote in votes:
        agent = audience.get(vote.agent_id)
        if agent is None:
            continue
        by_type.setdefault(agent.audience_type or "unknown", TypeTally()).add(vote.vote)

    fractions = [t.pro / t.total for t in by_type.values() if t.total]
    divergence = statistics.pstdev(fractions) if len(fractions) >= 2 else 0.0
    # per-round votes are not recorded, so the first round stands in
    return PerspectiveDivergence(
        highest_divergence_round=first_round,
        by_type=by_type,
        overall_divergence=divergence,
    )


def analyze_blind_spots(transcript: list[TranscriptEntry]) -> BlindSpots:
    """Keyword blind spots over the concatenated debater speeches."""
    pro = " ".join(e.content for e in transcript if e.stance is Stance.PRO)
    con = " ".join(e.content for e in transcript if e.stance is Stance.CON)
    return detect_blind_spots(pro, con)


async def generate_voting_analysis(db: DebateDatabase, debate_id: int) -> VotingAnalysis:
    """Aggregation, divergence and blind spots for one debate."""
    votes = await db.get_votes(debate_id)
    agents = await db.get_agents(debate_id)
    rounds = await db.get_rounds(debate_id)
    transcript = await db.get_transcript(debate_id)
    return VotingAnalysis(
        aggregation=aggregate_votes(votes, agents),
        divergence=analyze_perspective_divergence(
            votes, agents, first_round=rounds[0].sequence if rounds else 1
        ),
        blind_spots=analyze_blind_spots(transcript),
    )
