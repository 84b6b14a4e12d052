"""Bounded retry wrapping for external capability calls."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, TypeVar

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)
from tenacity.wait import wait_base

from tracksafe.config import RETRY_MAX_WAIT_SECONDS
from tracksafe.moderation.errors import NonRetryableProcessingError, TransientServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_retry(
    fn: Callable[..., T],
    *args: Any,
    max_attempts: int = 3,
    wait: Optional[wait_base] = None,
    **kwargs: Any,
) -> T:
    """Call *fn*, retrying ``TransientServiceError`` up to *max_attempts* times.

    The last transient error is re-raised unchanged; the scheduler then
    leaves the item for stale-claim recovery.
    """
    if wait is None:
        wait = wait_exponential_jitter(initial=0.5, max=RETRY_MAX_WAIT_SECONDS)
    retrying = Retrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait,
        retry=retry_if_exception_type(TransientServiceError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    return retrying(fn, *args, **kwargs)


def check_response(response: httpx.Response, service: str) -> None:
    """Translate an HTTP error status into the pipeline's error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    body = response.text[:300]
    if status == 429 or status >= 500:
        raise TransientServiceError(f"{service} returned {status}: {body}")
    if status in (401, 403):
        # Misconfiguration: keep items parked until credentials are fixed.
        logger.error("%s rejected credentials (%s)", service, status)
        raise TransientServiceError(f"{service} authentication failed ({status})")
    raise NonRetryableProcessingError(f"{service} rejected the input ({status}): {body}")
