"""
Request executor capability and its aiohttp implementation.

The engine never talks HTTP itself: every step renders a RequestDescriptor and
hands it, together with the session's cookies for the target host, to an
executor. Cookies come back explicitly on the Response so the Session stays
the only owner of cookie state.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Protocol
from urllib.parse import urljoin

import aiohttp

from storefront_load.exceptions import TransportError

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "storefront-load/1.0",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

REDIRECT_STATUSES = (301, 302, 303, 307, 308)


@dataclass(frozen=True)
class RequestDescriptor:
    """What to send. Opaque to the engine, interpreted by the executor."""
    method: str
    path: str
    form: Optional[Dict[str, str]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    redirects: int = 3
    # seconds; None uses the executor's read timeout
    timeout: Optional[float] = None
    host: str = "default"
    tags: Dict[str, str] = field(default_factory=dict)


@dataclass
class Response:
    """What came back."""
    status: int
    body: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400


class Executor(Protocol):
    """Anything that can turn a RequestDescriptor into a Response."""

    async def execute(
        self,
        descriptor: RequestDescriptor,
        cookies: Mapping[str, str],
    ) -> Response:
        """
        Issue one request.

        Raises:
            TransportError: when no response could be obtained.
        """
        ...


class AiohttpExecutor:
    """
    Executor backed by a shared aiohttp.ClientSession.

    The client keeps no cookies of its own (DummyCookieJar). Redirects are
    followed here rather than by aiohttp so that a cookie set by one hop is
    sent on the next; every cookie set along the chain is returned.

    A request's own timeout wins over `read_timeout`; either bounds each hop.
    """

    def __init__(
        self,
        base_url: str,
        concurrency: int = 100,
        default_headers: Optional[Dict[str, str]] = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 10.0,
        verify_ssl: bool = True,
    ):
        self.base_url = base_url.rstrip('/')
        self.concurrency = concurrency
        self.headers = default_headers or dict(DEFAULT_HEADERS)
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.verify_ssl = verify_ssl
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "AiohttpExecutor":
        connector = aiohttp.TCPConnector(limit=self.concurrency * 2, ssl=self.verify_ssl)
        logger.debug("Opening client session for %s (connection limit %d)", self.base_url, self.concurrency * 2)
        self._session = aiohttp.ClientSession(
            connector=connector,
            cookie_jar=aiohttp.DummyCookieJar(),
            headers=self.headers,
        )
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def execute(
        self,
        descriptor: RequestDescriptor,
        cookies: Mapping[str, str],
    ) -> Response:
        if self._session is None:
            raise RuntimeError("AiohttpExecutor must be used as an async context manager")

        timeout = aiohttp.ClientTimeout(
            total=descriptor.timeout or self.read_timeout,
            sock_connect=self.connect_timeout,
        )
        method, url, form = descriptor.method, f"{self.base_url}{descriptor.path}", descriptor.form
        jar = dict(cookies)
        returned: Dict[str, str] = {}

        try:
            for hop in range(descriptor.redirects + 1):
                async with self._session.request(
                    method,
                    url,
                    data=form,
                    headers=descriptor.headers or None,
                    cookies=jar or None,
                    allow_redirects=False,
                    timeout=timeout,
                ) as response:
                    for name, morsel in response.cookies.items():
                        jar[name] = returned[name] = morsel.value

                    location = response.headers.get("Location")
                    if response.status in REDIRECT_STATUSES and location and hop < descriptor.redirects:
                        url = urljoin(str(response.url), location)
                        # 307/308 repeat the request as is
                        if response.status not in (307, 308):
                            method, form = "GET", None
                        continue

                    body = await response.text(errors="replace")
                    return Response(
                        status=response.status,
                        body=body,
                        headers=dict(response.headers),
                        cookies=returned,
                        url=str(response.url),
                    )
        except asyncio.TimeoutError as e:
            raise TransportError(f"{descriptor.method} {descriptor.path}: timeout", kind="timeout") from e
        except aiohttp.ClientConnectionError as e:
            raise TransportError(f"{descriptor.method} {descriptor.path}: {e}", kind="connection") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"{descriptor.method} {descriptor.path}: {e}", kind="other") from e
