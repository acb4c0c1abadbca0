"""Evaluation framework – verdicts, reports, vote analytics and validators."""

from evaluation.classifiers import BlindSpots, detect_blind_spots, infer_intent
from evaluation.judgment import (
    JudgmentReport,
    Verdict,
    build_report,
    compute_verdict,
    determine_winner,
    load_report,
)
from evaluation.validators import DebateValidator, ValidationResult
from evaluation.voting import (
    VotingAnalysis,
    aggregate_votes,
    analyze_blind_spots,
    analyze_perspective_divergence,
    calculate_weighted_result,
    generate_voting_analysis,
)

__all__ = [
    "BlindSpots",
    "DebateValidator",
    "JudgmentReport",
    "ValidationResult",
    "Verdict",
    "VotingAnalysis",
    "aggregate_votes",
    "analyze_blind_spots",
    "analyze_perspective_divergence",
    "build_report",
    "calculate_weighted_result",
    "compute_verdict",
    "detect_blind_spots",
    "determine_winner",
    "generate_voting_analysis",
    "infer_intent",
    "load_report",
]
