"""Tests for the heuristic scanner and decision engine."""

from tracksafe.moderation.decision import (
    UNKNOWN,
    DecisionEngine,
    normalize_category,
    normalize_scores,
)
from tracksafe.moderation.heuristics import (
    EXCESSIVE_FILLER,
    EXCESSIVE_SILENCE,
    REPETITIVE_CONTENT,
    SHORT_DURATION,
    SPAM_PATTERN,
    HeuristicScanner,
)
from tracksafe.moderation.models import (
    ClassificationResult,
    ContentCategory,
    HeuristicSignal,
    ModeratableItem,
)

BENIGN = (
    "walking down the river in the early morning light the birds are singing "
    "softly while the city slowly wakes and coffee steams beside an open window "
    "where the curtains move with a gentle summer breeze"
)


def _item(duration: float = 45.0, category: ContentCategory = ContentCategory.music) -> ModeratableItem:
    return ModeratableItem(
        id="item-1",
        owner_id="user-1",
        audio_ref="s3://x.mp3",
        content_hash="c" * 64,
        duration_seconds=duration,
        content_category=category,
    )


# --- Heuristics ---


def test_benign_lyrics_raise_no_signal():
    assert HeuristicScanner().scan(BENIGN, _item()) == []


def test_repetitive_content():
    text = " ".join(["buy my song"] * 20)
    labels = [s.label for s in HeuristicScanner().scan(text, _item())]
    assert REPETITIVE_CONTENT in labels


def test_short_duration():
    labels = [s.label for s in HeuristicScanner().scan(BENIGN, _item(duration=12.0))]
    assert labels == [SHORT_DURATION]


def test_silence_only_checked_for_spoken_word():
    scanner = HeuristicScanner()
    assert scanner.scan("", _item(duration=300.0)) == []
    signals = scanner.scan("hello there", _item(300.0, ContentCategory.spoken_word))
    assert [s.label for s in signals] == [EXCESSIVE_SILENCE]


def test_silence_uses_analysed_sample_length():
    scanner = HeuristicScanner()
    text = " ".join(["word"] * 5 + BENIGN.split())
    item = _item(3600.0, ContentCategory.spoken_word)
    # 40 words over a two-minute sample is 20 wpm; over an hour it would be <1.
    assert scanner.scan(text, item, analysed_seconds=120.0) == []
    assert [s.label for s in scanner.scan(text, item)] == [EXCESSIVE_SILENCE]


def test_excessive_filler():
    text = "um so uh like yeah I was um thinking uh about the um song okay"
    labels = [s.label for s in HeuristicScanner().scan(text, _item())]
    assert EXCESSIVE_FILLER in labels


def test_spam_patterns():
    scanner = HeuristicScanner()
    one = scanner.scan("check the link in bio for more", _item())
    assert [(s.label, s.score) for s in one] == [(SPAM_PATTERN, 0.6)]
    many = scanner.scan("use promo code BEATS and buy now at www.example.com", _item())
    assert [(s.label, s.score) for s in many] == [(SPAM_PATTERN, 0.8)]


def test_sponsored_read_is_not_flagged_by_spam_cues_alone():
    text = "this episode is sponsored by acme visit acme.com and use promo code PODCAST"
    signals = HeuristicScanner().scan(text, _item(1800.0, ContentCategory.spoken_word), 120.0)
    decision = DecisionEngine().decide(ClassificationResult(category_scores={"hate": 0.01}), signals)
    assert SPAM_PATTERN in [s.label for s in signals]
    assert not decision.flagged


def test_non_latin_transcripts_are_tokenised():
    scanner = HeuristicScanner()
    item = _item(60.0, ContentCategory.spoken_word)
    russian = (
        "сегодня мы поговорим о том как правильно готовить хлеб дома нужно взять муку "
        "воду соль и немного дрожжей затем замесить тесто и оставить его на час"
    )
    assert scanner.scan(russian, item) == []

    japanese = "今日はパンの作り方について話します。小麦粉と水と塩を混ぜて一時間休ませます。"
    assert scanner.scan(japanese, item) == []

    looped = " ".join(["купи мой трек"] * 20)
    labels = [s.label for s in scanner.scan(looped, item)]
    assert REPETITIVE_CONTENT in labels


# --- Category normalisation ---


def test_normalize_category():
    assert normalize_category("harassment/threatening") == "harassment"
    assert normalize_category("self-harm") == "self_harm"
    assert normalize_category("Sexual/Minors") == "sexual_minors"
    assert normalize_category("brand_new_category") == UNKNOWN


def test_normalize_scores_clamps_and_keeps_max():
    scores = normalize_scores({"violence": 0.4, "violence/graphic": 0.7, "hate": 1.4, "x": -1})
    assert scores == {"violence": 0.7, "hate": 1.0, UNKNOWN: 0.0}


# --- Decision engine ---


def test_clean_decision():
    decision = DecisionEngine().decide(
        ClassificationResult(category_scores={"hate": 0.1, "violence": 0.05}), []
    )
    assert decision.confidence == 0.1
    assert not decision.flagged
    assert decision.reasons == []


def test_classifier_flag():
    decision = DecisionEngine().decide(
        ClassificationResult(category_scores={"harassment": 0.92, "hate": 0.02}), []
    )
    assert decision.flagged
    assert decision.confidence == 0.92
    assert decision.reasons == ["harassment"]
    assert decision.top_source == "harassment"


def test_confidence_is_max_of_sources():
    decision = DecisionEngine().decide(
        ClassificationResult(category_scores={"hate": 0.2}),
        [HeuristicSignal(SPAM_PATTERN, 0.9), HeuristicSignal(SHORT_DURATION, 0.3)],
    )
    assert decision.confidence == 0.9
    assert decision.flagged
    assert decision.top_source == SPAM_PATTERN
    assert decision.reasons == [SPAM_PATTERN, SHORT_DURATION]


def test_threshold_is_inclusive():
    decision = DecisionEngine().decide(ClassificationResult(category_scores={"hate": 0.85}), [])
    assert decision.flagged


def test_unknown_category_becomes_unknown_reason():
    decision = DecisionEngine().decide(
        ClassificationResult(category_scores={"extremism": 0.95}), []
    )
    assert decision.flagged
    assert decision.reasons == [UNKNOWN]


def test_flagged_decision_always_has_a_reason():
    engine = DecisionEngine()
    engine.config.category_thresholds["hate"] = 0.99
    decision = engine.decide(ClassificationResult(category_scores={"hate": 0.9}), [])
    assert decision.flagged
    assert decision.reasons == ["hate"]
