"""Notification dispatch for moderation state changes.

Deliveries run on a small thread pool: ``dispatch`` returns immediately and
never raises.  Failed deliveries are logged and recorded, never retried
synchronously, and never affect the state transition that triggered them.

Webhook payloads are signed with HMAC-SHA256 (``X-Tracksafe-Signature``).
Every attempt is appended to ``deliveries.jsonl`` under the data directory.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

import httpx

from tracksafe.config import NotificationConfig
from tracksafe.moderation.models import ModeratableItem, isoformat, utcnow

logger = logging.getLogger(__name__)

OUTCOMES = ("flagged", "approved", "rejected", "appeal_received", "appeal_resolved")
RECIPIENTS = ("owner", "admins")


@dataclass
class Notification:
    """Outbound payload handed to the delivery collaborator."""

    item_id: str
    owner_id: str
    outcome: str
    title: str
    body: str
    recipient: str = "owner"

    def __post_init__(self) -> None:
        if self.outcome not in OUTCOMES:
            raise ValueError(f"Unknown notification outcome: {self.outcome}")
        if self.recipient not in RECIPIENTS:
            raise ValueError(f"Unknown notification recipient: {self.recipient}")

    def to_payload(self) -> dict[str, Any]:
        return {
            "itemId": self.item_id,
            "ownerId": self.owner_id,
            "outcome": self.outcome,
            "title": self.title,
            "body": self.body,
            "recipient": self.recipient,
        }


# (outcome, recipient) -> (title, body template)
_TEMPLATES: dict[tuple[str, str], tuple[str, str]] = {
    ("flagged", "owner"): (
        "Your track is under review",
        "\"{title}\" was flagged by our automated checks and is being reviewed by our team.",
    ),
    ("flagged", "admins"): (
        "New item to review",
        "\"{title}\" was flagged ({reasons}).",
    ),
    ("approved", "owner"): (
        "Your track was approved",
        "\"{title}\" passed review and is now publicly available.",
    ),
    ("rejected", "owner"): (
        "Your track was not approved",
        "\"{title}\" was not approved: {note} You can appeal this decision once.",
    ),
    ("appeal_received", "owner"): (
        "Appeal received",
        "We'll review your appeal for \"{title}\" within 24-48 hours.",
    ),
    ("appeal_received", "admins"): (
        "New appeal to review",
        "The owner of \"{title}\" appealed the rejection.",
    ),
    ("appeal_resolved", "owner"): (
        "Your appeal was reviewed",
        "Your appeal for \"{title}\" was {decision}. This decision is final.",
    ),
}


def build_notification(
    item: ModeratableItem, outcome: str, recipient: str = "owner", **extra: str
) -> Notification:
    """Render the message for *outcome* about *item*."""
    title, body = _TEMPLATES[(outcome, recipient)]
    values = {
        "title": item.title or "Untitled",
        "reasons": ", ".join(item.flag_reasons) or "no reason recorded",
        "note": (item.review_note or "it does not meet our content policy.").rstrip(".") + ".",
        "decision": item.status.value,
    }
    values.update(extra)
    return Notification(
        item_id=item.id,
        owner_id=item.owner_id,
        outcome=outcome,
        title=title,
        body=body.format(**values),
        recipient=recipient,
    )


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class NotificationSink(Protocol):
    name: str

    def send(self, notification: Notification) -> int: ...


class LogSink:
    """Writes notifications to the log; used when no webhook is configured."""

    name = "log"

    def send(self, notification: Notification) -> int:
        logger.info(
            "Notification %s -> %s (%s): %s",
            notification.outcome, notification.recipient, notification.item_id,
            notification.title,
        )
        return 0


class WebhookSink:
    """POSTs each notification as JSON to a collaborator endpoint."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        secret: str = "",
        timeout: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.url = url
        self._secret = secret
        self._http = http_client or httpx.Client(timeout=timeout)

    @staticmethod
    def compute_signature(payload_bytes: bytes, secret: str) -> str:
        mac = hmac.new(secret.encode("utf-8"), payload_bytes, hashlib.sha256)
        return f"sha256={mac.hexdigest()}"

    def send(self, notification: Notification) -> int:
        body = json.dumps(notification.to_payload()).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "X-Tracksafe-Event": f"moderation.{notification.outcome}",
        }
        if self._secret:
            headers["X-Tracksafe-Signature"] = self.compute_signature(body, self._secret)
        response = self._http.post(self.url, content=body, headers=headers)
        response.raise_for_status()
        return response.status_code


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


@dataclass
class DeliveryRecord:
    id: str
    item_id: str
    outcome: str
    recipient: str
    sink: str
    success: bool
    response_status: int = 0
    error: str = ""
    delivered_at: str = ""
    duration_ms: int = 0


class NotificationDispatcher:
    """Non-blocking fan-out of notifications to a sink."""

    def __init__(
        self,
        sink: Optional[NotificationSink] = None,
        log_dir: Optional[Path] = None,
        max_workers: int = 4,
    ) -> None:
        self.sink = sink or LogSink()
        self._log_path = Path(log_dir) / "deliveries.jsonl" if log_dir else None
        if self._log_path is not None:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def _record(self, record: DeliveryRecord) -> None:
        if self._log_path is None:
            return
        with self._lock:
            with self._log_path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(asdict(record)) + "\n")

    def _deliver(self, notification: Notification) -> DeliveryRecord:
        start = time.monotonic()
        status, error, success = 0, "", False
        try:
            status = self.sink.send(notification)
            success = True
        except Exception as exc:  # delivery problems must never reach the pipeline
            error = str(exc)[:500]
            logger.warning(
                "Notification %s for item %s via %s failed: %s",
                notification.outcome, notification.item_id, self.sink.name, error,
            )
        record = DeliveryRecord(
            id=uuid.uuid4().hex[:16],
            item_id=notification.item_id,
            outcome=notification.outcome,
            recipient=notification.recipient,
            sink=self.sink.name,
            success=success,
            response_status=status,
            error=error,
            delivered_at=isoformat(utcnow()),
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        try:
            self._record(record)
        except OSError as exc:
            logger.warning("Could not record notification delivery: %s", exc)
        return record

    def dispatch(self, notification: Notification) -> None:
        """Queue *notification* for delivery and return immediately."""
        try:
            future = self._executor.submit(self._deliver, notification)
        except RuntimeError as exc:
            logger.warning("Dispatcher unavailable, dropping %s: %s", notification.outcome, exc)
            return
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued deliveries; True if all finished in time."""
        with self._lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def deliveries(self, limit: int = 100) -> list[DeliveryRecord]:
        """Recorded delivery attempts, newest first."""
        if self._log_path is None or not self._log_path.exists():
            return []
        records = [
            DeliveryRecord(**json.loads(line))
            for line in self._log_path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]
        records.sort(key=lambda r: r.delivered_at, reverse=True)
        return records[:limit]

    def close(self) -> None:
        self._executor.shutdown(wait=True)


def build_dispatcher(config: NotificationConfig, data_dir: Path) -> NotificationDispatcher:
    sink: NotificationSink
    if config.webhook_url:
        sink = WebhookSink(config.webhook_url, config.webhook_secret, config.timeout_seconds)
    else:
        sink = LogSink()
    return NotificationDispatcher(
        sink=sink, log_dir=data_dir / "notifications", max_workers=config.max_workers
    )
