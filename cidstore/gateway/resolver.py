"""IPFS gateway resolution with fallback and caching.

Resolves ``ipfs://`` locators and bare content ids to content: from the
response cache, from the local document store, then from public gateways
tried in a fixed order.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from cidstore.models import IPFS_SCHEME, GatewayConfig
from cidstore.storage.document_store import DocumentStore
from cidstore.utils.cache import TTLCache
from cidstore.utils.cid import is_valid_cid
from cidstore.utils.exceptions import FetchExhaustedError
from cidstore.utils.time import Clock

logger = logging.getLogger(__name__)

_HTTP_PREFIXES = ("http://", "https://")
_GATEWAY_PATH = "/ipfs/"


@dataclass
class ResolvedUrl:
    """A locator resolved against a gateway."""

    url: str
    gateway: str
    timestamp: float
    verified: bool = False


@dataclass
class FetchOptions:
    """Per-call overrides for gateway requests."""

    timeout: float | None = None
    max_redirects: int | None = None
    headers: dict[str, str] = field(default_factory=dict)


class GatewayResolver:
    """Fetches IPFS content through local storage and public gateways."""

    def __init__(
        self,
        config: GatewayConfig | None = None,
        store: DocumentStore | None = None,
        session: aiohttp.ClientSession | None = None,
        clock: Clock | None = None,
    ):
        """Initialize gateway resolver.

        Args:
            config: Gateway list, timeouts and cache sizing
            store: Local document store tried before any gateway
            session: HTTP session; created on first use when omitted
            clock: Clock for cache expiry and ranking

        """
        self.config = config or GatewayConfig()
        self.store = store
        self.clock = clock or Clock()
        self.session = session
        self._owns_session = session is None
        self._gateways: tuple[str, ...] = tuple(self.config.gateways)

        self._content_cache: TTLCache[str, Any] = TTLCache(
            max_size=self.config.content_cache_size,
            ttl=self.config.content_cache_ttl,
            clock=self.clock,
        )
        self._resolved_cache: TTLCache[str, ResolvedUrl] = TTLCache(
            max_size=self.config.resolution_cache_size,
            ttl=self.config.resolution_cache_ttl,
            clock=self.clock,
        )

    @property
    def gateways(self) -> tuple[str, ...]:
        """Fallback gateways in preference order."""
        return self._gateways

    async def start(self) -> None:
        """Open the HTTP session."""
        if self.session is None:
            self.session = aiohttp.ClientSession()
            self._owns_session = True

    async def stop(self) -> None:
        """Close the HTTP session if this resolver created it."""
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None

    def _build_url(self, locator: str, gateway: str) -> str:
        if not locator:
            return ""
        if locator.startswith(IPFS_SCHEME):
            return f"{gateway}{locator[len(IPFS_SCHEME):]}"
        if locator.startswith(_HTTP_PREFIXES):
            return locator
        if not is_valid_cid(locator.split("/", 1)[0]):
            logger.error("Invalid CID format: %s", locator)
            return ""
        return f"{gateway}{locator}"

    def to_fetchable_url(self, locator: str, gateway: str | None = None) -> str:
        """Convert a locator to an HTTP gateway URL.

        ``ipfs://`` locators and bare content ids are appended to the
        gateway; http(s) URLs pass through unchanged. Malformed content ids
        and unknown forms yield an empty string. Without an explicit
        ``gateway`` the result is cached per locator and a cached
        resolution is preferred.
        """
        if gateway is not None:
            return self._build_url(locator, gateway)

        cached = self._resolved_cache.get(locator)
        if cached is not None:
            return cached.url

        default = self._gateways[0]
        url = self._build_url(locator, default)
        if url and not locator.startswith(_HTTP_PREFIXES):
            self._resolved_cache.set(
                locator, ResolvedUrl(url=url, gateway=default, timestamp=self.clock.now())
            )
        return url

    def extract_content_id(self, locator: str) -> str:
        """Return the content id of a locator, without scheme or path."""
        if not locator:
            return ""
        if locator.startswith(IPFS_SCHEME):
            rest = locator[len(IPFS_SCHEME):]
        elif locator.startswith(_HTTP_PREFIXES):
            _, sep, rest = locator.partition(_GATEWAY_PATH)
            if not sep:
                return ""
        else:
            rest = locator
        return rest.split("/", 1)[0].split("?", 1)[0]

    def is_valid_locator(self, locator: str) -> bool:
        """Return True for ``ipfs://`` locators carrying a valid content id."""
        if not locator or not locator.startswith(IPFS_SCHEME):
            return False
        return is_valid_cid(self.extract_content_id(locator))

    async def fetch_content(
        self, locator: str, options: FetchOptions | None = None
    ) -> Any:
        """Fetch and decode the content behind ``locator``.

        JSON responses are parsed, ``text/*`` decoded, anything else
        returned as bytes.

        Raises:
            FetchExhaustedError: No source could deliver the content

        """
        options = options or FetchOptions()
        cid = self.extract_content_id(locator) or locator

        cached = self._content_cache.get(cid)
        if cached is not None:
            logger.debug("Returning cached content for CID: %s", cid)
            return cached

        if self.store is not None:
            try:
                content = await self.store.get_content(cid, max_attempts=1)
            except Exception as e:
                logger.debug(
                    "Local IPFS retrieval failed for CID %s, falling back to gateway: %s",
                    cid,
                    e,
                )
            else:
                if content is not None:
                    self._content_cache.set(cid, content)
                    return content

        errors: dict[str, BaseException] = {}
        last_error: BaseException | None = None
        tried: set[str] = set()
        for gateway in self._gateways:
            url = self._build_url(locator, gateway)
            if not url or url in tried:
                continue
            tried.add(url)
            try:
                data = await self._get(url, options)
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                logger.warning(
                    "Gateway %s failed for CID %s, trying next gateway: %s",
                    gateway,
                    cid,
                    e,
                )
                errors[gateway] = e
                last_error = e
                continue

            self._content_cache.set(cid, data)
            self._resolved_cache.set(
                locator,
                ResolvedUrl(
                    url=url, gateway=gateway, timestamp=self.clock.now(), verified=True
                ),
            )
            return data

        logger.error("Error fetching content from IPFS for %s", locator)
        msg = f"Failed to retrieve content for {locator} from any gateway"
        raise FetchExhaustedError(msg, locator=locator, errors=errors, cause=last_error)

    async def _get(self, url: str, options: FetchOptions) -> Any:
        if self.session is None:
            await self.start()
        assert self.session is not None

        timeout = aiohttp.ClientTimeout(
            total=options.timeout if options.timeout is not None else self.config.request_timeout
        )
        max_redirects = (
            options.max_redirects
            if options.max_redirects is not None
            else self.config.max_redirects
        )
        headers = {"Accept": self.config.accept, **options.headers}

        async with self.session.get(
            url,
            timeout=timeout,
            headers=headers,
            allow_redirects=max_redirects > 0,
            max_redirects=max_redirects,
        ) as response:
            response.raise_for_status()
            # redirects not followed are failures, not content
            if 300 <= response.status < 400:
                raise aiohttp.ClientResponseError(
                    response.request_info,
                    response.history,
                    status=response.status,
                    message=f"Redirect not followed: {response.headers.get('Location', '')}",
                    headers=response.headers,
                )
            body = await response.read()
            content_type = response.headers.get("Content-Type", "")

        if "application/json" in content_type:
            return json.loads(body.decode("utf-8"))
        if "text/" in content_type:
            return body.decode("utf-8", errors="replace")
        return body

    def resolved_gateway(self, locator: str) -> str | None:
        """Return the gateway that last served ``locator``, if still cached."""
        entry = self._resolved_cache.get(locator)
        if entry is None or not entry.verified:
            return None
        return entry.gateway

    def rank_gateways(self) -> list[str]:
        """Gateways ordered by recent successful fetches, most first.

        Only successes younger than ``rank_window`` count. The fixed
        fallback order used by ``fetch_content`` is not affected.
        """
        now = self.clock.now()
        counts = Counter(
            entry.gateway
            for _, entry in self._resolved_cache.items()
            if entry.verified and now - entry.timestamp < self.config.rank_window
        )
        return [gateway for gateway, _ in counts.most_common()]

    def clear_cache(self) -> None:
        """Empty both the content and the resolution caches."""
        self._content_cache.clear()
        self._resolved_cache.clear()
