"""End-to-end tests for the scheduler and per-item pipeline using fakes."""

import tempfile
import threading
import time
from datetime import timedelta

from tracksafe.clients.fakes import FakeClassifier, FakeTranscriber
from tracksafe.config import Config
from tracksafe.moderation.decision import PROCESSING_FAILURE_REASON
from tracksafe.moderation.errors import TransientServiceError
from tracksafe.moderation.models import AudioDescriptor, ModerationStatus as S, utcnow
from tracksafe.notifications import NotificationDispatcher
from tracksafe.service import ModerationService

BENIGN = (
    "walking down the river in the early morning light the birds are singing "
    "softly while the city slowly wakes and coffee steams beside an open window"
)


class RecordingSink:
    name = "recording"

    def __init__(self):
        self.sent = []

    def send(self, notification):
        self.sent.append(notification)
        return 200


def _service(tmpdir, transcriber, classifier=None, **scheduler):
    config = Config(data_dir=tmpdir)
    for key, value in scheduler.items():
        setattr(config.scheduler, key, value)
    sink = RecordingSink()
    service = ModerationService.from_config(
        config,
        transcriber=transcriber,
        classifier=classifier or FakeClassifier(),
        notifier=NotificationDispatcher(sink=sink),
    )
    return service, sink


def _upload(service, ref, owner="user-1", duration=45.0, category="music", n=0):
    return service.intake.submit(
        owner,
        AudioDescriptor(
            audio_ref=ref,
            audio_format="mp3",
            duration_seconds=duration,
            bitrate_kbps=128,
            size_bytes=720_000,
            content_hash=f"{hash(ref) & 0xFFFFFFFF:08x}{n:056x}",
            content_category=category,
            title=ref,
        ),
    )


def test_benign_track_becomes_clean_and_public():
    with tempfile.TemporaryDirectory() as tmpdir:
        transcriber = FakeTranscriber({"s3://benign.mp3": BENIGN})
        service, _ = _service(tmpdir, transcriber, FakeClassifier(baseline=0.10))
        item = _upload(service, "s3://benign.mp3")
        assert item.is_public

        summary = service.scheduler.run_once()
        assert summary.to_response()["processed"] == 1
        assert summary.clean == 1
        assert summary.flagged == 0
        assert summary.errors == 0

        stored = service.store.get(item.id)
        assert stored.status == S.clean
        assert stored.confidence == 0.10
        assert stored.flag_reasons == []
        assert stored.transcript == BENIGN
        assert stored.checked_at is not None
        assert stored.is_public
        assert [i.id for i in service.store.list_public()] == [item.id]


def test_harassment_is_flagged_and_hidden():
    with tempfile.TemporaryDirectory() as tmpdir:
        transcriber = FakeTranscriber({"s3://rant.mp3": "you are a worthless loser " + BENIGN})
        service, sink = _service(tmpdir, transcriber)
        item = _upload(service, "s3://rant.mp3")

        summary = service.scheduler.run_once()
        assert summary.flagged == 1

        stored = service.store.get(item.id)
        assert stored.status == S.flagged
        assert stored.flagged
        assert stored.flag_reasons == ["harassment"]
        assert stored.confidence == 0.92
        assert not stored.is_public
        assert service.store.list_public() == []

        service.notifier.flush(timeout=5)
        assert sorted((n.outcome, n.recipient) for n in sink.sent) == [
            ("flagged", "admins"),
            ("flagged", "owner"),
        ]


def test_unreadable_audio_is_flagged_for_manual_review():
    with tempfile.TemporaryDirectory() as tmpdir:
        service, _ = _service(tmpdir, FakeTranscriber())
        item = _upload(service, "missing:s3://gone.mp3")

        summary = service.scheduler.run_once()
        assert summary.flagged == 1
        assert summary.errors == 0

        stored = service.store.get(item.id)
        assert stored.status == S.flagged
        assert stored.flag_reasons == [PROCESSING_FAILURE_REASON]
        assert stored.confidence == 1.0


def test_transient_failure_parks_item_until_stale_recovery():
    with tempfile.TemporaryDirectory() as tmpdir:
        attempts = []

        def flaky_once(ref):
            attempts.append(ref)
            if len(attempts) == 1:
                raise TransientServiceError("503 from transcription")
            return BENIGN

        transcriber = FakeTranscriber({"s3://song.mp3": flaky_once})
        service, _ = _service(tmpdir, transcriber)
        item = _upload(service, "s3://song.mp3")

        first = service.scheduler.run_once()
        assert first.errors == 1
        assert first.processed == 0
        assert service.store.get(item.id).status == S.checking

        # Not yet stale: nothing to do.
        second = service.scheduler.run_once()
        assert second.recovered == 0
        assert second.processed == 0

        later = utcnow() + timedelta(seconds=service.scheduler.config.stale_claim_seconds + 1)
        third = service.scheduler.run_once(now=later)
        assert third.recovered == 1
        assert third.clean == 1
        assert service.store.get(item.id).status == S.clean


def test_stuck_claim_is_recovered_and_finished():
    with tempfile.TemporaryDirectory() as tmpdir:
        service, _ = _service(tmpdir, FakeTranscriber(default_text=BENIGN))
        item = _upload(service, "s3://crashed.mp3")
        # A previous run crashed after claiming.
        stale = timedelta(seconds=service.scheduler.config.stale_claim_seconds + 60)
        service.store.claim_pending(10, "dead-run", now=utcnow() - stale)

        summary = service.scheduler.run_once()
        assert summary.recovered == 1
        assert summary.clean == 1
        assert service.store.get(item.id).status == S.clean


def test_result_of_a_recovered_claim_is_discarded():
    with tempfile.TemporaryDirectory() as tmpdir:
        holder = {}

        def reclaimed_midway(ref):
            store = holder["service"].store
            store.recover_stale(0, now=utcnow() + timedelta(seconds=1))
            store.claim_pending(10, "other-run")
            return BENIGN

        service, _ = _service(tmpdir, FakeTranscriber({"s3://slow.mp3": reclaimed_midway}))
        holder["service"] = service
        item = _upload(service, "s3://slow.mp3")

        summary = service.scheduler.run_once()
        assert summary.skipped == 1
        assert summary.processed == 0
        stored = service.store.get(item.id)
        assert stored.status == S.checking
        assert stored.claim_token == "other-run"
        assert stored.transcript is None


def test_overlapping_runs_claim_each_item_once():
    with tempfile.TemporaryDirectory() as tmpdir:
        transcriber = FakeTranscriber(default_text=BENIGN)
        service, _ = _service(tmpdir, transcriber)
        ids = [_upload(service, f"s3://track-{n}.mp3", n=n).id for n in range(20)]

        summaries = []
        barrier = threading.Barrier(2)

        def run():
            barrier.wait()
            summaries.append(service.scheduler.run_once())

        threads = [threading.Thread(target=run) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(s.processed for s in summaries) == 20
        assert sorted(transcriber.calls.values()) == [1] * 20
        assert all(service.store.get(i).status == S.clean for i in ids)


def test_batch_size_and_concurrency_cap():
    with tempfile.TemporaryDirectory() as tmpdir:
        lock = threading.Lock()
        state = {"active": 0, "peak": 0}

        def slow(ref):
            with lock:
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
            time.sleep(0.05)
            with lock:
                state["active"] -= 1
            return BENIGN

        transcriber = FakeTranscriber()
        transcriber.default_text = slow
        service, _ = _service(tmpdir, transcriber, batch_size=4, concurrency=2)
        for n in range(6):
            _upload(service, f"s3://t{n}.mp3", n=n)

        summary = service.scheduler.run_once()
        assert summary.processed == 4
        assert state["peak"] <= 2
        assert service.store.counts()["pending_check"] == 2


def test_items_are_claimed_only_when_a_worker_starts_them():
    with tempfile.TemporaryDirectory() as tmpdir:
        holder = {}
        in_checking = []

        def observe(ref):
            in_checking.append(holder["service"].store.counts()["checking"])
            return BENIGN

        transcriber = FakeTranscriber()
        transcriber.default_text = observe
        service, _ = _service(tmpdir, transcriber, batch_size=3, concurrency=1)
        holder["service"] = service
        for n in range(4):
            _upload(service, f"s3://queued-{n}.mp3", n=n)

        summary = service.scheduler.run_once()
        assert summary.processed == 3
        # Items waiting behind the concurrency cap stay pending, so they cannot age.
        assert in_checking == [1, 1, 1]
        assert service.store.counts()["pending_check"] == 1


class RecoveringClassifier(FakeClassifier):
    """Runs an overlapping run's stale-claim recovery mid-classification."""

    def __init__(self, store, stale_seconds):
        super().__init__()
        self.store = store
        self.stale_seconds = stale_seconds
        self.recovered = None

    def classify(self, text):
        self.recovered = self.store.recover_stale(self.stale_seconds)
        return super().classify(text)


def test_claim_is_refreshed_after_a_slow_transcription():
    with tempfile.TemporaryDirectory() as tmpdir:
        holder = {}

        def slow_transcription(ref):
            # Pretend the transcription stage ran longer than the stale timeout.
            store = holder["service"].store
            item = store.list_items(status=S.checking)[0]
            stale = timedelta(seconds=holder["stale"] + 60)
            store.touch_claim(item.id, item.claim_token, now=utcnow() - stale)
            return BENIGN

        service, _ = _service(tmpdir, FakeTranscriber({"s3://long.mp3": slow_transcription}))
        stale_seconds = service.scheduler.config.stale_claim_seconds
        holder.update(service=service, stale=stale_seconds)
        classifier = RecoveringClassifier(service.store, stale_seconds)
        service.scheduler.pipeline.classifier = classifier
        item = _upload(service, "s3://long.mp3")

        summary = service.scheduler.run_once()
        assert classifier.recovered == []
        assert summary.clean == 1
        assert service.store.get(item.id).status == S.clean


def test_long_audio_is_sampled():
    with tempfile.TemporaryDirectory() as tmpdir:
        transcriber = FakeTranscriber(default_text=BENIGN)
        service, _ = _service(tmpdir, transcriber)
        item = _upload(service, "s3://podcast.mp3", duration=3600.0, category="spoken_word")

        service.scheduler.run_once()
        assert transcriber.sample_requests == [120]
        stored = service.store.get(item.id)
        assert stored.transcript_sampled
        assert stored.status == S.clean


def test_empty_transcript_skips_classifier():
    with tempfile.TemporaryDirectory() as tmpdir:
        classifier = FakeClassifier()
        service, _ = _service(tmpdir, FakeTranscriber(default_text=""), classifier)
        item = _upload(service, "s3://instrumental.mp3")

        service.scheduler.run_once()
        assert classifier.calls == []
        stored = service.store.get(item.id)
        assert stored.status == S.clean
        assert stored.confidence == 0.0


def test_classifier_outage_parks_item():
    with tempfile.TemporaryDirectory() as tmpdir:
        classifier = FakeClassifier(error=TransientServiceError("classifier down"))
        service, _ = _service(tmpdir, FakeTranscriber(default_text=BENIGN), classifier)
        item = _upload(service, "s3://song.mp3")

        summary = service.scheduler.run_once()
        assert summary.errors == 1
        stored = service.store.get(item.id)
        assert stored.status == S.checking
        assert stored.confidence is None
