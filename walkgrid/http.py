"""HTTP client with rate-limit backoff and request metrics."""
from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)

RATE_LIMITED = 429


class RateLimitExceeded(RuntimeError):
    pass


class UpstreamError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 6
    base_delay: float = 0.5
    max_delay: float = 30.0

    def backoff(self, attempt: int) -> float:
        """Delay before retrying after the zero-based ``attempt``."""
        return min(self.max_delay, self.base_delay * (2 ** attempt))


@dataclass
class RequestMetrics:
    network_places: int = 0
    network_routes: int = 0
    cache_hits_places: int = 0
    cache_hits_routes: int = 0
    rate_limit_waits: int = 0

    @property
    def places_count(self) -> int:
        return self.network_places

    @property
    def routes_count(self) -> int:
        return self.network_routes

    def inc_network(self, kind: str) -> None:
        if kind == "places":
            self.network_places += 1
        elif kind == "routes":
            self.network_routes += 1
        else:
            raise ValueError(f"Unknown request kind: {kind}")

    def inc_cache_hit(self, kind: str) -> None:
        if kind == "places":
            self.cache_hits_places += 1
        elif kind == "routes":
            self.cache_hits_routes += 1
        else:
            raise ValueError(f"Unknown request kind: {kind}")


class HttpClient:
    def __init__(
        self,
        api_key: str,
        timeout: int = 20,
        retry_policy: Optional[RetryPolicy] = None,
        metrics: Optional[RequestMetrics] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.metrics = metrics
        self.sleep = sleep
        self.session = requests.Session()

    def close(self) -> None:
        self.session.close()

    def send(
        self,
        url: str,
        body: Dict[str, Any],
        field_mask: str,
        retry_policy: Optional[RetryPolicy] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        """POST ``body`` as JSON, retrying only while the upstream answers 429.

        Any other response, successful or not, is returned to the caller as is.
        Raises RateLimitExceeded once ``max_retries`` retries are used up.
        """
        policy = retry_policy or self.retry_policy
        headers = {
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": field_mask,
            "Content-Type": "application/json",
        }
        if extra_headers:
            headers.update(extra_headers)

        payload = json.dumps(body)
        for attempt in range(policy.max_retries + 1):
            resp = self.session.post(url, data=payload, headers=headers, timeout=self.timeout)
            if resp.status_code != RATE_LIMITED:
                return resp

            logger.warning(
                "HTTP 429 from %s (attempt %s/%s)", url, attempt + 1, policy.max_retries + 1
            )
            if attempt >= policy.max_retries:
                break
            delay = retry_after_seconds(resp)
            if delay is None:
                delay = policy.backoff(attempt)
            delay = min(policy.max_delay, delay)
            if self.metrics is not None:
                self.metrics.rate_limit_waits += 1
            self.sleep(delay)

        raise RateLimitExceeded(
            f"Too many 429s from {url}; gave up after {policy.max_retries + 1} attempts"
        )


def retry_after_seconds(resp: requests.Response) -> Optional[float]:
    retry_after = resp.headers.get("Retry-After")
    if not retry_after:
        return None
    try:
        delay = float(retry_after)
    except ValueError:
        return None
    if not math.isfinite(delay):
        return None
    return max(0.0, delay)


def raise_for_upstream(resp: requests.Response, context: str) -> None:
    """Raise UpstreamError for any non-2xx response."""
    status = resp.status_code
    if 200 <= status < 300:
        return
    body = resp.text
    logger.error("%s failed with HTTP %s", context, status)
    raise UpstreamError(f"{context} {status}: {body}", status_code=status, body=body)
