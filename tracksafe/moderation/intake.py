"""Synchronous structural checks run at upload time.

Nothing here calls an external service: the checks only look at the
descriptor supplied by the upload path and at the store's hash index.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Optional

from tracksafe.config import IntakeConfig
from tracksafe.moderation.errors import IntakeRejected
from tracksafe.moderation.models import (
    AudioDescriptor,
    ContentCategory,
    ModeratableItem,
    ModerationStatus,
)
from tracksafe.moderation.store import ModerationStore

logger = logging.getLogger(__name__)

_MIME_TO_FORMAT = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/m4a": "m4a",
    "audio/x-m4a": "m4a",
    "audio/mp4": "m4a",
    "audio/aac": "aac",
    "audio/ogg": "ogg",
    "audio/webm": "webm",
    "audio/flac": "flac",
    "audio/x-flac": "flac",
}

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


def normalize_format(value: str) -> str:
    """Map a MIME type, file name or extension to a bare lowercase extension."""
    value = value.strip().lower()
    if value in _MIME_TO_FORMAT:
        return _MIME_TO_FORMAT[value]
    if "/" in value:
        return value.rsplit("/", 1)[-1]
    return value.rsplit(".", 1)[-1]


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _mib(n: int) -> str:
    return f"{n / (1024 * 1024):.0f}MB" if n >= 1024 * 1024 else f"{n // 1024}KB"


class IntakeValidator:
    """Validates uploads and creates ``pending_check`` items."""

    def __init__(self, store: ModerationStore, config: Optional[IntakeConfig] = None) -> None:
        self.store = store
        self.config = config or IntakeConfig()

    def _structural_failures(self, descriptor: AudioDescriptor) -> list[IntakeRejected]:
        cfg = self.config
        failures: list[IntakeRejected] = []

        try:
            category = ContentCategory(descriptor.content_category)
        except ValueError:
            failures.append(
                IntakeRejected(
                    "invalid_category",
                    f"Unknown content category '{descriptor.content_category}'.",
                )
            )
            category = None

        fmt = normalize_format(descriptor.audio_format)
        if fmt not in cfg.allowed_formats:
            allowed = ", ".join(f.upper() for f in cfg.allowed_formats)
            failures.append(
                IntakeRejected("unsupported_format", f"Unsupported file type. Please use {allowed}.")
            )

        size = descriptor.size_bytes
        if size is None and descriptor.raw_bytes is not None:
            size = len(descriptor.raw_bytes)
        if size is None or size < cfg.min_bytes:
            failures.append(
                IntakeRejected(
                    "file_too_small",
                    f"File size is too small (minimum {_mib(cfg.min_bytes)} required).",
                )
            )
        elif size > cfg.max_bytes:
            failures.append(
                IntakeRejected(
                    "file_too_large",
                    f"File size must be less than {_mib(cfg.max_bytes)}.",
                )
            )

        if descriptor.duration_seconds < cfg.min_duration_seconds:
            failures.append(
                IntakeRejected(
                    "duration_below_minimum",
                    f"Duration below minimum of {cfg.min_duration_seconds:g} seconds.",
                )
            )
        elif descriptor.duration_seconds > cfg.max_duration_seconds:
            failures.append(
                IntakeRejected(
                    "duration_above_maximum",
                    f"Duration above maximum of {cfg.max_duration_seconds:g} seconds.",
                )
            )

        if category is not None:
            floor = cfg.min_bitrate_kbps.get(category.value, 0)
            if descriptor.bitrate_kbps < floor:
                failures.append(
                    IntakeRejected(
                        "bitrate_too_low",
                        f"Bitrate below {floor} kbps minimum for {category.value.replace('_', '-')}.",
                    )
                )

        if descriptor.raw_bytes is None:
            digest = (descriptor.content_hash or "").lower()
            if not _HASH_RE.match(digest):
                failures.append(
                    IntakeRejected("invalid_hash", "A sha256 content hash or the raw bytes are required.")
                )
        return failures

    def _digest(self, descriptor: AudioDescriptor) -> str:
        if descriptor.raw_bytes is not None:
            return content_hash(descriptor.raw_bytes)
        return (descriptor.content_hash or "").lower()

    def validate(self, owner_id: str, descriptor: AudioDescriptor) -> list[IntakeRejected]:
        """Run every check and return all failures (empty when acceptable)."""
        failures = self._structural_failures(descriptor)
        if not any(f.code == "invalid_hash" for f in failures):
            if self.store.find_by_hash(self._digest(descriptor), owner_id=owner_id):
                failures.append(
                    IntakeRejected("duplicate_upload", "You have already uploaded this audio file.")
                )
        return failures

    def submit(self, owner_id: str, descriptor: AudioDescriptor) -> ModeratableItem:
        """Validate and create the item, or raise the first ``IntakeRejected``."""
        failures = self._structural_failures(descriptor)
        if failures:
            logger.info("Upload by %s rejected: %s", owner_id, failures[0].code)
            raise failures[0]

        size = descriptor.size_bytes
        if size is None:
            size = len(descriptor.raw_bytes or b"")
        item = ModeratableItem(
            id=ModeratableItem.new_id(),
            owner_id=owner_id,
            audio_ref=descriptor.audio_ref,
            content_hash=self._digest(descriptor),
            content_category=ContentCategory(descriptor.content_category),
            audio_format=normalize_format(descriptor.audio_format),
            size_bytes=size,
            duration_seconds=float(descriptor.duration_seconds),
            bitrate_kbps=int(descriptor.bitrate_kbps),
            title=descriptor.title,
            status=ModerationStatus.pending_check,
        )
        # The store re-checks the per-owner hash under its lock.
        self.store.create_item(item, actor=f"owner:{owner_id}")
        logger.info("Accepted upload %s from %s", item.id, owner_id)
        return item
