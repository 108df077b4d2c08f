"""
Proposal description resolution.

A proposal's description link is either inline text or a URL. Links are set
by whoever creates the proposal, so URLs are only fetched from allowlisted
hosts that resolve to public addresses; every redirect hop is checked the
same way. Bodies are read up to a byte cap with a short timeout and clamped.
Any failure returns the link itself so the caller always has something to
show.
"""
import asyncio
import ipaddress
import socket
from typing import Awaitable, Callable, Iterable, List, Optional
from urllib.parse import urlparse

import httpx

from dao_radar.config import common_settings
from dao_radar.utils.logger import logger

MAX_DESCRIPTION_CHARS = 5000
MAX_REDIRECTS = 3
FETCHABLE_SCHEMES = ("http", "https")

Resolver = Callable[[str, int], Awaitable[List[str]]]


class BlockedUrlError(Exception):
    """A description URL outside the allowlist or pointing at a non-public address."""


async def resolve_host(host: str, port: int) -> List[str]:
    infos = await asyncio.get_running_loop().getaddrinfo(host, port, type=socket.SOCK_STREAM)
    return [info[4][0] for info in infos]


def is_public_address(address: str) -> bool:
    ip = ipaddress.ip_address(address.split("%", 1)[0])
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return not (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


class DescriptionFetcher:
    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        ipfs_gateway: Optional[str] = None,
        allowed_hosts: Optional[Iterable[str]] = None,
        max_bytes: Optional[int] = None,
        resolver: Resolver = resolve_host,
    ):
        self.timeout = timeout or common_settings.DESCRIPTION_TIMEOUT_SECONDS
        self.ipfs_gateway = ipfs_gateway or common_settings.IPFS_GATEWAY_URL
        hosts = allowed_hosts if allowed_hosts is not None else common_settings.DESCRIPTION_ALLOWED_HOSTS
        self.allowed_hosts = {host.lower() for host in hosts}
        gateway_host = urlparse(self.ipfs_gateway).hostname
        if gateway_host:
            self.allowed_hosts.add(gateway_host.lower())
        self.max_bytes = max_bytes or common_settings.DESCRIPTION_MAX_BYTES
        self._resolve = resolver
        self._owns_client = http_client is None
        self._http = http_client if http_client is not None else httpx.AsyncClient(timeout=self.timeout)

    def resolve_url(self, link: str) -> Optional[str]:
        """The URL to fetch for ``link``, or None when the link is inline text or not fetchable."""
        if link.startswith("ipfs://"):
            return f"{self.ipfs_gateway.rstrip('/')}/{link[len('ipfs://'):]}"
        parsed = urlparse(link)
        if parsed.scheme in FETCHABLE_SCHEMES and parsed.netloc:
            return link
        return None

    def is_allowed_host(self, host: str) -> bool:
        host = host.lower().rstrip(".")
        return any(host == allowed or host.endswith("." + allowed) for allowed in self.allowed_hosts)

    async def check_url(self, url: str) -> None:
        """
        Raises:
            BlockedUrlError: If the URL may not be fetched
        """
        parsed = urlparse(url)
        host = parsed.hostname or ""
        if parsed.scheme not in FETCHABLE_SCHEMES or not host:
            raise BlockedUrlError(f"unsupported URL {url!r}")
        if not self.is_allowed_host(host):
            raise BlockedUrlError(f"host {host} is not allowlisted")
        try:
            port = parsed.port or (443 if parsed.scheme == "https" else 80)
            addresses = await self._resolve(host, port)
        except (OSError, ValueError) as e:
            raise BlockedUrlError(f"cannot resolve {host}: {e}") from e
        if not addresses or not all(is_public_address(address) for address in addresses):
            raise BlockedUrlError(f"host {host} resolves to a non-public address")

    async def fetch(self, link: str) -> str:
        if not link:
            return ""
        if not link.startswith(("http", "ipfs")):
            return link

        url = self.resolve_url(link)
        if url is None:
            logger.debug(f"[DescriptionFetcher] Not fetching unsupported link {link!r}")
            return link

        try:
            text = await asyncio.wait_for(self._download(url), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[DescriptionFetcher] Timed out fetching {url}")
            return link
        except BlockedUrlError as e:
            logger.warning(f"[DescriptionFetcher] Refusing to fetch {url}: {e}")
            return link
        except httpx.HTTPError as e:
            logger.warning(f"[DescriptionFetcher] Failed to fetch {url}: {e}")
            return link
        return text if text is not None else link

    async def _download(self, url: str) -> Optional[str]:
        for _ in range(MAX_REDIRECTS + 1):
            await self.check_url(url)
            async with self._http.stream("GET", url, follow_redirects=False) as response:
                if response.is_redirect:
                    url = str(response.url.join(response.headers["location"]))
                    continue
                if response.status_code >= 400:
                    logger.warning(f"[DescriptionFetcher] {url} returned HTTP {response.status_code}")
                    return None
                body = await self._read_capped(response)
                return body.decode(response.encoding or "utf-8", errors="replace")[:MAX_DESCRIPTION_CHARS]
        raise BlockedUrlError(f"more than {MAX_REDIRECTS} redirects")

    async def _read_capped(self, response: httpx.Response) -> bytes:
        body = bytearray()
        async for chunk in response.aiter_bytes():
            body.extend(chunk[: self.max_bytes - len(body)])
            if len(body) >= self.max_bytes:
                break
        return bytes(body)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
