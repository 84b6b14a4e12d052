"""Per-item decision pipeline: transcribe, classify, scan, decide, persist."""

from __future__ import annotations

import logging
from typing import Optional

from tracksafe.clients import Classifier, Transcriber
from tracksafe.moderation.decision import PROCESSING_FAILURE_REASON, DecisionEngine
from tracksafe.moderation.errors import NonRetryableProcessingError
from tracksafe.moderation.heuristics import HeuristicScanner
from tracksafe.moderation.models import (
    ClassificationResult,
    ModeratableItem,
    ModerationStatus,
    Transcript,
    isoformat,
    utcnow,
)
from tracksafe.moderation.store import ModerationStore
from tracksafe.notifications import NotificationDispatcher, build_notification

logger = logging.getLogger(__name__)

OUTCOME_CLEAN = "clean"
OUTCOME_FLAGGED = "flagged"
OUTCOME_LOST_CLAIM = "lost_claim"

# Confidence recorded when the pipeline could not assess the audio at all
PROCESSING_FAILURE_CONFIDENCE = 1.0


class ItemPipeline:
    """Drives one claimed item to ``clean`` or ``flagged``.

    ``TransientServiceError`` propagates to the caller untouched; the item
    then stays in ``checking`` until stale-claim recovery re-queues it.
    """

    def __init__(
        self,
        store: ModerationStore,
        transcriber: Transcriber,
        classifier: Classifier,
        scanner: Optional[HeuristicScanner] = None,
        engine: Optional[DecisionEngine] = None,
        notifier: Optional[NotificationDispatcher] = None,
        sample_seconds: float = 120.0,
    ) -> None:
        self.store = store
        self.transcriber = transcriber
        self.classifier = classifier
        self.scanner = scanner or HeuristicScanner()
        self.engine = engine or DecisionEngine()
        self.notifier = notifier
        self.sample_seconds = sample_seconds

    def _transcribe(self, item: ModeratableItem) -> Transcript:
        if item.transcript is not None:
            return Transcript(text=item.transcript, sampled=item.transcript_sampled)
        return self.transcriber.transcribe(
            item.audio_ref,
            duration_seconds=item.duration_seconds,
            bitrate_kbps=item.bitrate_kbps,
            audio_format=item.audio_format,
            max_seconds=self.sample_seconds,
        )

    def _notify(self, item: ModeratableItem, outcome: str, recipient: str) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.dispatch(build_notification(item, outcome, recipient))
        except Exception:
            logger.exception("Could not queue %s notification for %s", outcome, item.id)

    def _fail(self, item: ModeratableItem, claim_token: str, error: Exception) -> str:
        logger.warning("Item %s cannot be processed, flagging for manual review: %s", item.id, error)
        updated = self.store.transition(
            item.id,
            ModerationStatus.checking,
            ModerationStatus.flagged,
            claim_token=claim_token,
            details={"error": str(error)[:500]},
            flagged=True,
            flag_reasons=item.flag_reasons + [PROCESSING_FAILURE_REASON],
            confidence=PROCESSING_FAILURE_CONFIDENCE,
            checked_at=isoformat(utcnow()),
        )
        if updated is None:
            logger.info("Item %s was re-claimed elsewhere; discarding failure", item.id)
            return OUTCOME_LOST_CLAIM
        self._notify(updated, "flagged", "owner")
        self._notify(updated, "flagged", "admins")
        return OUTCOME_FLAGGED

    def process(self, item: ModeratableItem, claim_token: str) -> str:
        """Run the pipeline for a claimed item and return its outcome."""
        try:
            transcript = self._transcribe(item)
            if not self.store.touch_claim(item.id, claim_token):
                logger.info("Item %s was re-claimed during transcription", item.id)
                return OUTCOME_LOST_CLAIM
            text = transcript.text
            if text.strip():
                classification = self.classifier.classify(text)
            else:
                classification = ClassificationResult()
            analysed = item.duration_seconds
            if transcript.sampled:
                analysed = min(item.duration_seconds, self.sample_seconds)
            signals = self.scanner.scan(text, item, analysed_seconds=analysed)
        except NonRetryableProcessingError as exc:
            return self._fail(item, claim_token, exc)

        decision = self.engine.decide(classification, signals)
        new_status = ModerationStatus.flagged if decision.flagged else ModerationStatus.clean
        updates = {
            "confidence": decision.confidence,
            "transcript": text,
            "transcript_sampled": transcript.sampled,
            "checked_at": isoformat(utcnow()),
        }
        if decision.flagged:
            updates["flagged"] = True
            updates["flag_reasons"] = item.flag_reasons + [
                r for r in decision.reasons if r not in item.flag_reasons
            ]

        updated = self.store.transition(
            item.id,
            ModerationStatus.checking,
            new_status,
            claim_token=claim_token,
            details={
                "confidence": decision.confidence,
                "top_source": decision.top_source,
                "signals": [s.label for s in signals],
                "classifier": classification.model,
            },
            **updates,
        )
        if updated is None:
            logger.info("Item %s was re-claimed elsewhere; discarding result", item.id)
            return OUTCOME_LOST_CLAIM

        logger.info(
            "Item %s -> %s (confidence %.2f, reasons %s)",
            item.id, new_status.value, decision.confidence, decision.reasons,
        )
        if decision.flagged:
            self._notify(updated, "flagged", "owner")
            self._notify(updated, "flagged", "admins")
            return OUTCOME_FLAGGED
        return OUTCOME_CLEAN
