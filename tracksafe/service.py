"""Assemble the moderation components from a ``Config``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from tracksafe.clients import Classifier, Transcriber, build_classifier, build_transcriber
from tracksafe.config import Config
from tracksafe.moderation.appeals import AppealHandler
from tracksafe.moderation.audit import TransitionAuditLog
from tracksafe.moderation.decision import DecisionEngine
from tracksafe.moderation.heuristics import HeuristicScanner
from tracksafe.moderation.intake import IntakeValidator
from tracksafe.moderation.pipeline import ItemPipeline
from tracksafe.moderation.review import OwnerLookup, ReviewQueue
from tracksafe.moderation.scheduler import BatchScheduler
from tracksafe.moderation.store import ModerationStore
from tracksafe.notifications import NotificationDispatcher, build_dispatcher


@dataclass
class ModerationService:
    config: Config
    store: ModerationStore
    audit: TransitionAuditLog
    notifier: NotificationDispatcher
    intake: IntakeValidator
    scheduler: BatchScheduler
    review: ReviewQueue
    appeals: AppealHandler

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        transcriber: Optional[Transcriber] = None,
        classifier: Optional[Classifier] = None,
        notifier: Optional[NotificationDispatcher] = None,
        owner_lookup: Optional[OwnerLookup] = None,
    ) -> "ModerationService":
        """Build every component; capabilities may be injected (tests, fakes)."""
        data = config.data_path
        audit = TransitionAuditLog(data / "audit")
        store = ModerationStore(data / "moderation", audit=audit)
        notifier = notifier or build_dispatcher(config.notifications, data)

        pipeline = ItemPipeline(
            store,
            transcriber or build_transcriber(config.transcription),
            classifier or build_classifier(config.classification, config.decision.flag_threshold),
            scanner=HeuristicScanner(config.heuristics),
            engine=DecisionEngine(config.decision),
            notifier=notifier,
            sample_seconds=config.pipeline.sample_seconds,
        )
        return cls(
            config=config,
            store=store,
            audit=audit,
            notifier=notifier,
            intake=IntakeValidator(store, config.intake),
            scheduler=BatchScheduler(store, pipeline, config.scheduler),
            review=ReviewQueue(store, notifier, owner_lookup),
            appeals=AppealHandler(store, notifier),
        )
