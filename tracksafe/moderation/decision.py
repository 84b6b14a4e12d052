"""Combine classifier scores and heuristic signals into one verdict."""

from __future__ import annotations

import logging
from typing import Optional

from tracksafe.config import DecisionConfig
from tracksafe.moderation.models import ClassificationResult, Decision, HeuristicSignal

logger = logging.getLogger(__name__)

# Bump when the category set changes so stored flag reasons can be interpreted.
CATEGORY_SET_VERSION = "2024.1"

HATE = "hate"
HARASSMENT = "harassment"
VIOLENCE = "violence"
SELF_HARM = "self_harm"
SEXUAL = "sexual"
SEXUAL_MINORS = "sexual_minors"
UNKNOWN = "unknown"

CATEGORIES: tuple[str, ...] = (HATE, HARASSMENT, VIOLENCE, SELF_HARM, SEXUAL, SEXUAL_MINORS)

# Vendor spellings seen from classifier APIs
_ALIASES: dict[str, str] = {
    "hate/threatening": HATE,
    "hate_threatening": HATE,
    "harassment/threatening": HARASSMENT,
    "harassment_threatening": HARASSMENT,
    "violence/graphic": VIOLENCE,
    "violence_graphic": VIOLENCE,
    "self-harm": SELF_HARM,
    "self-harm/intent": SELF_HARM,
    "self-harm/instructions": SELF_HARM,
    "self_harm_intent": SELF_HARM,
    "self_harm_instructions": SELF_HARM,
    "selfharm": SELF_HARM,
    "sexual/minors": SEXUAL_MINORS,
    "sexual_content": SEXUAL,
    "sexual-minors": SEXUAL_MINORS,
}

PROCESSING_FAILURE_REASON = "processing failure - manual review required"


def normalize_category(name: str) -> str:
    """Map a vendor category name onto the closed category set.

    Anything unrecognised becomes ``unknown`` so classifier schema drift
    cannot introduce arbitrary strings into flag reasons.
    """
    key = name.strip().lower()
    if key in CATEGORIES:
        return key
    if key in _ALIASES:
        return _ALIASES[key]
    logger.warning("Classifier returned unknown category %r (set %s)", name, CATEGORY_SET_VERSION)
    return UNKNOWN


def normalize_scores(raw: dict[str, float]) -> dict[str, float]:
    """Normalise names and clamp scores, keeping the max per category."""
    scores: dict[str, float] = {}
    for name, value in raw.items():
        category = normalize_category(name)
        score = min(max(float(value), 0.0), 1.0)
        scores[category] = max(score, scores.get(category, 0.0))
    return scores


class DecisionEngine:
    """Turns classification + heuristics into confidence and a verdict."""

    def __init__(self, config: Optional[DecisionConfig] = None) -> None:
        self.config = config or DecisionConfig()

    def _threshold(self, category: str) -> float:
        if category == UNKNOWN:
            return self.config.unknown_category_threshold
        return self.config.category_thresholds.get(category, self.config.flag_threshold)

    def decide(
        self,
        classification: ClassificationResult,
        signals: list[HeuristicSignal],
    ) -> Decision:
        scores = normalize_scores(classification.category_scores)

        top_category, top_score = None, 0.0
        if scores:
            top_category = max(scores, key=lambda c: scores[c])
            top_score = scores[top_category]

        top_signal: Optional[HeuristicSignal] = None
        if signals:
            top_signal = max(signals, key=lambda s: s.score)
        heuristic_score = min(max(top_signal.score, 0.0), 1.0) if top_signal else 0.0

        confidence = max(top_score, heuristic_score)
        if top_signal is not None and heuristic_score > top_score:
            top_source = top_signal.label
        else:
            top_source = top_category or ""
        flagged = confidence >= self.config.flag_threshold

        reasons = [
            c
            for c in sorted(scores, key=lambda c: scores[c], reverse=True)
            if scores[c] >= self._threshold(c)
        ]
        reasons.extend(s.label for s in signals if s.label not in reasons)
        if flagged and not reasons:
            reasons.append(top_source or "confidence_threshold")

        return Decision(
            confidence=round(confidence, 6),
            flagged=flagged,
            reasons=reasons,
            top_source=top_source,
        )
