"""Deterministic in-process capabilities for tests and local runs.

``FakeTranscriber`` returns scripted transcripts per audio reference and
``FakeClassifier`` scores text by keyword, so the whole pipeline can run
without any network access.
"""

from __future__ import annotations

import threading
from collections import Counter
from typing import Callable, Optional, Union

from tracksafe.moderation.errors import AudioUnreadableError, TransientServiceError
from tracksafe.moderation.models import ClassificationResult, Transcript

Scripted = Union[str, Exception, Callable[[str], str]]

# keyword -> (category, score)
DEFAULT_KEYWORDS: dict[str, tuple[str, float]] = {
    "kill you": ("violence", 0.93),
    "hurt you": ("violence", 0.7),
    "worthless loser": ("harassment", 0.92),
    "hate them all": ("hate", 0.88),
    "end it all": ("self_harm", 0.8),
    "explicit": ("sexual", 0.6),
}


class FakeTranscriber:
    """Returns a scripted transcript (or raises a scripted error) per ref.

    Refs without a script get *default_text*.  Refs starting with
    ``missing:`` raise ``AudioUnreadableError`` and refs starting with
    ``flaky:`` raise ``TransientServiceError``.
    """

    model = "fake-transcriber"

    def __init__(
        self,
        scripts: Optional[dict[str, Scripted]] = None,
        default_text: str = "",
    ) -> None:
        self.scripts: dict[str, Scripted] = dict(scripts or {})
        self.default_text = default_text
        self.calls: Counter[str] = Counter()
        self.sample_requests: list[Optional[float]] = []
        self._lock = threading.Lock()

    def transcribe(
        self,
        audio_ref: str,
        *,
        duration_seconds: float = 0.0,
        bitrate_kbps: int = 0,
        audio_format: str = "",
        max_seconds: Optional[float] = None,
    ) -> Transcript:
        with self._lock:
            self.calls[audio_ref] += 1
            self.sample_requests.append(max_seconds)
        if audio_ref.startswith("missing:"):
            raise AudioUnreadableError(f"Audio file not found: {audio_ref}")
        if audio_ref.startswith("flaky:"):
            raise TransientServiceError("transcription service unavailable")

        script = self.scripts.get(audio_ref, self.default_text)
        if isinstance(script, Exception):
            raise script
        text = script(audio_ref) if callable(script) else script
        sampled = bool(max_seconds) and duration_seconds > (max_seconds or 0)
        return Transcript(text=text, sampled=sampled, model=self.model)


class FakeClassifier:
    """Scores text by keyword lookup; unmatched text gets *baseline*."""

    model = "fake-classifier"

    def __init__(
        self,
        keywords: Optional[dict[str, tuple[str, float]]] = None,
        baseline: float = 0.01,
        flag_threshold: float = 0.85,
        error: Optional[Exception] = None,
    ) -> None:
        self.keywords = dict(DEFAULT_KEYWORDS if keywords is None else keywords)
        self.baseline = baseline
        self.flag_threshold = flag_threshold
        self.error = error
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def classify(self, text: str) -> ClassificationResult:
        with self._lock:
            self.calls.append(text)
        if self.error is not None:
            raise self.error
        scores = {"hate": self.baseline, "harassment": self.baseline, "violence": self.baseline}
        lowered = text.lower()
        for keyword, (category, score) in self.keywords.items():
            if keyword in lowered:
                scores[category] = max(score, scores.get(category, 0.0))
        flagged = any(s >= self.flag_threshold for s in scores.values())
        return ClassificationResult(flagged=flagged, category_scores=scores, model=self.model)
