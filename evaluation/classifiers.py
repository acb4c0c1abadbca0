"""Keyword heuristics used by the orchestrator and the voting analysis.

Both classifiers are pure functions of their text input. Callers receive
them as plain callables so a learned classifier can replace either one
without touching the orchestration flow.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field

from data.models import RequestIntent

IntentClassifier = Callable[[str], RequestIntent]

_PRO_SIGNALS = (
    r"\bpro\b",
    r"\bpro side\b",
    r"\bsupport(?:s|ing)? the motion\b",
    r"\bin favou?r\b",
    r"\baffirmative\b",
    r"\bagree with (?:the )?pro\b",
)
_CON_SIGNALS = (
    r"\bcon\b",
    r"\bcon side\b",
    r"\boppos(?:e|es|ing) the motion\b",
    r"\bagainst\b",
    r"\bnegative\b",
    r"\bagree with (?:the )?con\b",
)


def _count(patterns: tuple[str, ...], text: str) -> int:
    return sum(len(re.findall(p, text)) for p in patterns)


def infer_intent(content: str) -> RequestIntent:
    """Guess which side an audience request supports.

    Counts explicit pro and con signals; ties and texts with no signal at
    all count as support for the con side.
    """
    text = content.lower()
    if _count(_PRO_SIGNALS, text) > _count(_CON_SIGNALS, text):
        return RequestIntent.SUPPORT_PRO
    return RequestIntent.SUPPORT_CON


@dataclass
class BlindSpots:
    """Gaps found in the two sides' speeches."""

    pro_blind_spots: list[str] = field(default_factory=list)
    con_blind_spots: list[str] = field(default_factory=list)
    shared_blind_spots: list[str] = field(default_factory=list)
    missed_opportunities: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "pro_blind_spots": self.pro_blind_spots,
            "con_blind_spots": self.con_blind_spots,
            "shared_blind_spots": self.shared_blind_spots,
            "missed_opportunities": self.missed_opportunities,
        }


def _mentions(text: str, *words: str) -> bool:
    return any(w in text for w in words)


def detect_blind_spots(pro_content: str, con_content: str) -> BlindSpots:
    """Flag topics neither or one side touched, from keyword presence alone."""
    pro = pro_content.lower()
    con = con_content.lower()
    spots = BlindSpots()

    if not _mentions(pro, "data", "case"):
        spots.pro_blind_spots.append("Lacks supporting data and case studies")
    if not _mentions(con, "theory", "logic"):
        spots.con_blind_spots.append("Lacks a theoretical framework")
    if not _mentions(pro, "cost") and not _mentions(con, "cost"):
        spots.shared_blind_spots.append("Neither side discussed costs")
    if not _mentions(pro, "risk") and not _mentions(con, "risk"):
        spots.shared_blind_spots.append("Neither side discussed potential risks")
    if not _mentions(pro, "counter") and not _mentions(con, "counter"):
        spots.missed_opportunities.append(
            "Neither side engaged deeply with the opposing arguments"
        )
    return spots
