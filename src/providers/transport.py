"""
Upstream transport

Issues GETs against provider endpoints with connect/request timeouts and a
bounded retry budget, returning the parsed JSON body.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp
import orjson

from core.config import HTTPConfig, get_http_config
from core.metrics import upstream_requests
from .exceptions import FetchError

logger = logging.getLogger(__name__)


def resolve_url(base: str, path: str) -> str:
    """Join a provider base URL and a path; absolute paths are used as-is"""
    if path.startswith('http://') or path.startswith('https://'):
        return path
    if not path:
        return base
    return f"{base.rstrip('/')}/{path.lstrip('/')}"


class _RetryableStatus(Exception):
    def __init__(self, status: int, body: str):
        super().__init__(f"HTTP {status}")
        self.status = status
        self.body = body


class AiohttpTransport:
    """
    GET transport over a shared aiohttp session

    Connection errors, timeouts and 5xx responses are retried up to
    `config.retries` times, waiting `min_retry_timeout * 2**attempt` between
    attempts. 4xx responses and undecodable bodies fail immediately.
    """

    def __init__(self, config: Optional[HTTPConfig] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        self.config = config or get_http_config()
        self._session = session
        self._owns_session = session is None

    async def initialize(self) -> None:
        """Create the pooled HTTP session if one was not supplied"""
        if self._session is not None:
            return

        connector = aiohttp.TCPConnector(
            limit=self.config.max_pool_size,
            limit_per_host=self.config.max_per_host,
            ttl_dns_cache=self.config.ttl_dns_cache
        )
        self._session = aiohttp.ClientSession(connector=connector)
        self._owns_session = True
        logger.info("Provider HTTP session initialized")

    async def cleanup(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            logger.info("Provider HTTP session closed")
        self._session = None

    @property
    def timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.config.request_timeout,
            sock_connect=self.config.connect_timeout
        )

    async def get(self, base: str, path: str) -> Dict[str, Any]:
        """
        GET base+path and return the decoded JSON body

        Raises:
            FetchError: after the retry budget is exhausted or on a non-retryable failure
        """
        if self._session is None:
            await self.initialize()

        url = resolve_url(base, path)
        attempts = self.config.retries + 1

        for attempt in range(attempts):
            try:
                body = await self._get_once(url)
                upstream_requests.labels(outcome='success').inc()
                return body

            except _RetryableStatus as e:
                error = FetchError(f"GET {url} returned {e.status}", url=url,
                                   status=e.status, attempts=attempt + 1)
            except asyncio.TimeoutError:
                error = FetchError(f"GET {url} timed out", url=url, attempts=attempt + 1)
            except aiohttp.ClientResponseError as e:
                upstream_requests.labels(outcome='rejected').inc()
                raise FetchError(f"GET {url} returned {e.status}: {e.message}", url=url,
                                 status=e.status, attempts=attempt + 1) from e
            except aiohttp.ClientError as e:
                error = FetchError(f"GET {url} failed: {e}", url=url, attempts=attempt + 1)

            upstream_requests.labels(outcome='retryable_error').inc()
            if attempt < attempts - 1:
                wait_time = self.config.min_retry_timeout * (2 ** attempt)
                logger.warning(f"Retry {attempt + 1}/{self.config.retries} after {wait_time}s: {error}")
                await asyncio.sleep(wait_time)
            else:
                logger.error(f"All {attempts} attempts failed: {error}")
                raise error

    async def _get_once(self, url: str) -> Dict[str, Any]:
        headers = {'Accept': 'application/json'}
        async with self._session.get(url, headers=headers, timeout=self.timeout) as response:
            if response.status >= 500:
                raise _RetryableStatus(response.status, await response.text())
            response.raise_for_status()

            raw = await response.read()
            try:
                return orjson.loads(raw)
            except orjson.JSONDecodeError as e:
                upstream_requests.labels(outcome='invalid_body').inc()
                raise FetchError(f"GET {url} returned a non-JSON body: {e}", url=url,
                                 status=response.status) from e
