"""
HTTP retrieval of raw release payloads.

The fetcher only moves bytes; it never interprets them. Non-2xx responses and
transport errors surface as ``FetchFailure`` so the orchestrator can record the
run as failed without touching the stored fingerprint.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Mapping

import requests
from flask import current_app, has_app_context

from .errors import FetchFailure

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "UK-Asylum-Dashboard/1.0 (Research)"
DEFAULT_TIMEOUT_SECONDS = 60


def compute_fingerprint(payload: bytes) -> str:
    """Return the SHA-256 hex digest used for change detection."""
    return hashlib.sha256(payload).hexdigest()


@dataclass(frozen=True)
class FetchedPayload:
    """Raw bytes returned by one fetch together with response metadata."""

    url: str
    content: bytes
    status_code: int = 200
    content_type: str | None = None
    final_url: str | None = None

    @property
    def fingerprint(self) -> str:
        return compute_fingerprint(self.content)

    @property
    def size(self) -> int:
        return len(self.content)


class HttpFetcher:
    """
    Thin wrapper around ``requests.Session`` configured for publisher endpoints.

    Redirects are followed; the configured ``User-Agent`` identifies the
    research crawler to the publisher.
    """

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.session = session or requests.Session()
        self.user_agent = user_agent
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | None = None) -> "HttpFetcher":
        if config is None:
            config = current_app.config if has_app_context() else {}
        return cls(
            user_agent=config.get("INGEST_USER_AGENT") or DEFAULT_USER_AGENT,
            timeout=config.get("INGEST_FETCH_TIMEOUT_SECONDS") or DEFAULT_TIMEOUT_SECONDS,
        )

    def fetch(self, url: str) -> FetchedPayload:
        logger.info("Fetching %s", url, extra={"ingest_fetch_url": url})
        try:
            response = self.session.get(
                url,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
                allow_redirects=True,
            )
        except requests.RequestException as exc:
            raise FetchFailure(url, str(exc)) from exc

        if not 200 <= response.status_code < 300:
            raise FetchFailure(url, f"HTTP {response.status_code}", status_code=response.status_code)

        payload = FetchedPayload(
            url=url,
            content=response.content,
            status_code=response.status_code,
            content_type=response.headers.get("Content-Type"),
            final_url=response.url,
        )
        logger.debug(
            "Fetched %s bytes from %s",
            payload.size,
            url,
            extra={"ingest_fetch_url": url, "ingest_fetch_bytes": payload.size},
        )
        return payload

    __call__ = fetch

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HttpFetcher":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
