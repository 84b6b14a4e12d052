"""Harmful-content classifiers: text in, per-category scores out."""

from __future__ import annotations

import json
import logging
import re
from typing import Optional

import anthropic
import httpx
from tenacity.wait import wait_base

from tracksafe.clients.retry import call_with_retry, check_response
from tracksafe.moderation.decision import CATEGORIES, normalize_scores
from tracksafe.moderation.errors import NonRetryableProcessingError, TransientServiceError
from tracksafe.moderation.models import ClassificationResult

logger = logging.getLogger(__name__)

# Longer inputs are truncated before classification
MAX_INPUT_CHARS = 32_000


class OpenAIModerationClassifier:
    """Classifier backed by an OpenAI-compatible ``/moderations`` endpoint."""

    DEFAULT_MODEL = "omni-moderation-latest"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "",
        timeout: float = 60.0,
        max_attempts: int = 3,
        http_client: Optional[httpx.Client] = None,
        retry_wait: Optional[wait_base] = None,
    ) -> None:
        self.model = model or self.DEFAULT_MODEL
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max_attempts
        self._api_key = api_key
        self._retry_wait = retry_wait
        self._http = http_client or httpx.Client(timeout=timeout)

    def _post(self, text: str) -> ClassificationResult:
        try:
            response = self._http.post(
                f"{self.base_url}/moderations",
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={"model": self.model, "input": text[:MAX_INPUT_CHARS]},
            )
        except httpx.TimeoutException as exc:
            raise TransientServiceError(f"Classification timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientServiceError(f"Classification service unreachable: {exc}") from exc
        check_response(response, "classification")

        try:
            result = response.json()["results"][0]
            scores = {str(k): float(v) for k, v in result["category_scores"].items()}
            flagged = bool(result.get("flagged", False))
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise TransientServiceError(f"Unexpected classification response: {exc}") from exc
        return ClassificationResult(
            flagged=flagged, category_scores=normalize_scores(scores), model=self.model
        )

    def classify(self, text: str) -> ClassificationResult:
        if not text.strip():
            return ClassificationResult(model=self.model)
        return call_with_retry(
            self._post, text, max_attempts=self.max_attempts, wait=self._retry_wait
        )


# ---------------------------------------------------------------------------
# LLM-backed classifier
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = (
    "You are a content-safety classifier for a music and audio platform. "
    "You receive the transcript of an uploaded audio track. Rate how likely the "
    "transcript violates policy in each category, from 0.0 (certainly not) to "
    "1.0 (certainly). Song lyrics may use strong language; rate intent, not "
    "vocabulary alone. Respond with a single JSON object and nothing else, with "
    "exactly these keys: " + ", ".join(CATEGORIES) + "."
)

_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)


class AnthropicClassifier:
    """Classifier that asks an Anthropic model for per-category JSON scores.

    When no API key is configured every call raises
    ``TransientServiceError`` so items stay parked instead of passing
    unchecked.
    """

    DEFAULT_MODEL = "claude-sonnet-4-5-20250929"

    def __init__(
        self,
        api_key: str,
        model: str = "",
        timeout: float = 60.0,
        max_attempts: int = 3,
        flag_threshold: float = 0.85,
        client: Optional[anthropic.Anthropic] = None,
        retry_wait: Optional[wait_base] = None,
    ) -> None:
        self.model = model or self.DEFAULT_MODEL
        self.max_attempts = max_attempts
        self.flag_threshold = flag_threshold
        self._retry_wait = retry_wait
        if client is not None:
            self._client = client
        elif api_key:
            # Retries are handled here, not by the SDK.
            self._client = anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)
        else:
            self._client = None

    @property
    def configured(self) -> bool:
        return self._client is not None

    @staticmethod
    def _parse(content: str) -> dict[str, float]:
        match = _JSON_RE.search(content)
        if not match:
            raise TransientServiceError("Classifier reply contained no JSON object")
        try:
            data = json.loads(match.group(0))
            return {str(k): float(v) for k, v in data.items()}
        except (ValueError, TypeError, AttributeError) as exc:
            raise TransientServiceError(f"Classifier reply was not valid scores: {exc}") from exc

    def _complete(self, text: str) -> ClassificationResult:
        try:
            response = self._client.messages.create(
                model=self.model,
                max_tokens=256,
                temperature=0.0,
                system=_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": text[:MAX_INPUT_CHARS]}],
            )
        except anthropic.BadRequestError as exc:
            raise NonRetryableProcessingError(f"Classifier rejected the input: {exc}") from exc
        except anthropic.APIError as exc:
            raise TransientServiceError(f"Classifier call failed: {exc}") from exc

        content = response.content[0].text if response.content else ""
        scores = normalize_scores(self._parse(content))
        flagged = any(score >= self.flag_threshold for score in scores.values())
        return ClassificationResult(flagged=flagged, category_scores=scores, model=self.model)

    def classify(self, text: str) -> ClassificationResult:
        if not text.strip():
            return ClassificationResult(model=self.model)
        if not self.configured:
            raise TransientServiceError("Anthropic classifier not configured. Set ANTHROPIC_API_KEY.")
        return call_with_retry(
            self._complete, text, max_attempts=self.max_attempts, wait=self._retry_wait
        )
