"""Local, deterministic checks that supplement the external classifier.

Each check returns at most one ``HeuristicSignal`` carrying a score in
[0, 1].  Scores are combined with classifier scores by the decision engine.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Optional

from tracksafe.config import HeuristicsConfig
from tracksafe.moderation.models import ContentCategory, HeuristicSignal, ModeratableItem

REPETITIVE_CONTENT = "repetitive_content"
SHORT_DURATION = "short_duration"
EXCESSIVE_SILENCE = "excessive_silence"
EXCESSIVE_FILLER = "excessive_filler"
SPAM_PATTERN = "spam_pattern"

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

# Scripts written without spaces between words; each character counts as one token.
_UNSPACED = "\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff"
# Letters and digits in any script, keeping in-word apostrophes ("don't").
_WORD_RE = re.compile(
    rf"[{_UNSPACED}]|[^\W_{_UNSPACED}]+(?:'[^\W_{_UNSPACED}]+)*"
)

_FILLER_WORDS: set[str] = {
    "uh", "um", "uhm", "erm", "er", "ah", "hmm", "mm", "like", "yeah", "okay",
}

_SPAM_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("url", re.compile(r"\b(?:https?://|www\.)\S+|\b[a-z0-9-]+\.(?:com|net|io|ly|gg|xyz)\b", re.IGNORECASE)),
    ("link_in_bio", re.compile(r"\blink\s+in\s+(?:my\s+)?bio\b", re.IGNORECASE)),
    ("promo_code", re.compile(r"\b(?:promo|discount|coupon)\s+code\b", re.IGNORECASE)),
    ("follow_for_follow", re.compile(r"\b(?:follow|sub(?:scribe)?)\s+(?:for|4)\s+(?:follow|sub)\b", re.IGNORECASE)),
    ("free_offer", re.compile(r"\b(?:free\s+(?:money|followers|streams|plays)|click\s+(?:here|the\s+link))\b", re.IGNORECASE)),
    ("buy_now", re.compile(r"\b(?:buy|order)\s+now\b", re.IGNORECASE)),
    ("crypto_giveaway", re.compile(r"\b(?:crypto|bitcoin|btc|eth)\s+(?:giveaway|airdrop)\b", re.IGNORECASE)),
    ("phone_number", re.compile(r"\b(?:\+?\d{1,2}[\s.-]?)?\(?\d{3}\)?[\s.-]\d{3}[\s.-]\d{4}\b")),
]


def _tokens(text: str) -> list[str]:
    return _WORD_RE.findall(text.lower())


class HeuristicScanner:
    """Stateless scanner over a transcript and item metadata."""

    def __init__(self, config: Optional[HeuristicsConfig] = None) -> None:
        self.config = config or HeuristicsConfig()

    # -- checks --------------------------------------------------------------

    def _check_repetition(self, words: list[str]) -> Optional[HeuristicSignal]:
        cfg = self.config
        if len(words) < cfg.repetition_min_words:
            return None
        unique_ratio = len(set(words)) / len(words)
        trigrams = Counter(zip(words, words[1:], words[2:]))
        top_share = 0.0
        if trigrams:
            top_share = trigrams.most_common(1)[0][1] * 3 / len(words)
        if unique_ratio <= cfg.repetition_unique_ratio or top_share >= 0.5:
            return HeuristicSignal(
                REPETITIVE_CONTENT,
                cfg.repetition_score,
                f"unique word ratio {unique_ratio:.2f}, top phrase share {top_share:.2f}",
            )
        return None

    def _check_short(self, item: ModeratableItem) -> Optional[HeuristicSignal]:
        cfg = self.config
        if 0 < item.duration_seconds < cfg.short_duration_seconds:
            return HeuristicSignal(
                SHORT_DURATION,
                cfg.short_duration_score,
                f"{item.duration_seconds:.1f}s is shorter than {cfg.short_duration_seconds:g}s",
            )
        return None

    def _check_silence(
        self, words: list[str], item: ModeratableItem, analysed_seconds: float
    ) -> Optional[HeuristicSignal]:
        # Instrumentals legitimately produce little or no transcript.
        if item.content_category != ContentCategory.spoken_word or analysed_seconds <= 0:
            return None
        cfg = self.config
        rate = len(words) / (analysed_seconds / 60.0)
        if rate < cfg.silence_min_words_per_minute:
            return HeuristicSignal(
                EXCESSIVE_SILENCE,
                cfg.silence_score,
                f"{rate:.1f} words per minute",
            )
        return None

    def _check_filler(self, words: list[str]) -> Optional[HeuristicSignal]:
        cfg = self.config
        if len(words) < 10:
            return None
        filler = sum(1 for w in words if w in _FILLER_WORDS)
        ratio = filler / len(words)
        if ratio >= cfg.filler_ratio:
            return HeuristicSignal(EXCESSIVE_FILLER, cfg.filler_score, f"filler ratio {ratio:.2f}")
        return None

    def _check_spam(self, text: str) -> Optional[HeuristicSignal]:
        hits = [label for label, pattern in _SPAM_PATTERNS if pattern.search(text)]
        if not hits:
            return None
        cfg = self.config
        score = cfg.spam_multi_score if len(hits) >= 2 else cfg.spam_score
        return HeuristicSignal(SPAM_PATTERN, score, ", ".join(hits))

    # -- public API ----------------------------------------------------------

    def scan(
        self,
        transcript: str,
        item: ModeratableItem,
        analysed_seconds: Optional[float] = None,
    ) -> list[HeuristicSignal]:
        """Return every signal raised for *transcript* and *item*.

        *analysed_seconds* is the length of audio the transcript covers
        (the leading sample for long content); defaults to the full duration.
        """
        if analysed_seconds is None:
            analysed_seconds = item.duration_seconds
        words = _tokens(transcript or "")
        checks = (
            self._check_repetition(words),
            self._check_short(item),
            self._check_silence(words, item, analysed_seconds),
            self._check_filler(words),
            self._check_spam(transcript or ""),
        )
        return [signal for signal in checks if signal is not None]
