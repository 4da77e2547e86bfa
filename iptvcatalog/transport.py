#!/usr/bin/env python3
"""HTTP transport for playlist downloads and catalog API calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF = 0.5
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


class TransportError(Exception):
    """Network error, timeout or non-200 response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def create_session(
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff: float = DEFAULT_RETRY_BACKOFF,
) -> requests.Session:
    """Create a requests session with retry logic"""
    session = requests.Session()
    retry = Retry(
        total=max(0, int(max_retries)),
        backoff_factor=max(0.0, float(backoff)),
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"],
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class PlaylistFetcher:
    """Blocking `fetch(url) -> text`, with an awaitable wrapper."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self.session = session or create_session()
        self.timeout = timeout
        self.headers: Dict[str, str] = {"User-Agent": user_agent, "Accept": "*/*"}

    def _get(self, url: str, params: Optional[Dict[str, object]] = None) -> requests.Response:
        try:
            response = self.session.get(
                url,
                params=params,
                headers=self.headers,
                timeout=self.timeout,
                allow_redirects=True,
            )
        except requests.exceptions.Timeout as e:
            raise TransportError(f"Timeout fetching {url}") from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Error fetching {url}: {e}") from e

        if response.status_code != 200:
            raise TransportError(
                f"HTTP {response.status_code} fetching {url}",
                status_code=response.status_code,
            )
        return response

    def fetch(self, url: str) -> str:
        response = self._get(url)
        logger.debug("Fetched %d bytes from %s", len(response.content), url)
        return response.text

    def fetch_json(self, url: str, params: Optional[Dict[str, object]] = None):
        response = self._get(url, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {url}") from e

    async def fetch_async(self, url: str) -> str:
        return await asyncio.to_thread(self.fetch, url)

    def close(self) -> None:
        self.session.close()
