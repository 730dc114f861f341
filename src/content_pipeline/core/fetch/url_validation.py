"""SSRF protection for image URLs.

Every URL the fetcher touches (the initial target and each redirect hop) goes
through ``validate_image_url`` (or ``validate_image_url_async`` inside the
event loop) before any network call. The check cannot be switched off;
callers may only tune the HTTPS requirement and inject a DNS resolver.
"""

import asyncio
import inspect
import ipaddress
import logging
import re
import socket
from typing import Callable, Iterable, Optional
from urllib.parse import urlparse

from content_pipeline.core.errors import SSRFError

logger = logging.getLogger(__name__)

MAX_URL_LENGTH = 2048

Resolver = Callable[[str], Iterable[str]]

BLOCKED_HOSTS = frozenset(["localhost", "127.0.0.1", "0.0.0.0", "::1", "::"])
BLOCKED_HOSTNAME_PATTERNS = [
    re.compile(r"\.local$"),  # mDNS
    re.compile(r"\.internal$"),  # Internal domains
    re.compile(r"\.localhost$"),  # localhost subdomains
]

# Decimal, hex or octal IPv4 shorthand (127.1, 2130706433, 0x7f000001, 0177.0.0.1)
_NUMERIC_HOST_RE = re.compile(r"^(?:0x[0-9a-f]+|\d+)(?:\.(?:0x[0-9a-f]+|\d+)){0,3}$")

# Cloud instance metadata services (AWS, AWS IPv6, GCP, Alibaba)
CLOUD_METADATA_HOSTS = frozenset(
    [
        "169.254.169.254",
        "fd00:ec2::254",
        "metadata.google.internal",
        "metadata.goog",
        "100.100.100.200",
    ]
)

BLOCKED_IP_RANGES = [
    ipaddress.ip_network("0.0.0.0/8"),  # Current network
    ipaddress.ip_network("10.0.0.0/8"),  # RFC1918
    ipaddress.ip_network("100.64.0.0/10"),  # Carrier-grade NAT
    ipaddress.ip_network("127.0.0.0/8"),  # Loopback IPv4
    ipaddress.ip_network("169.254.0.0/16"),  # Link-local IPv4
    ipaddress.ip_network("172.16.0.0/12"),  # RFC1918
    ipaddress.ip_network("192.0.0.0/24"),  # IETF protocol assignments
    ipaddress.ip_network("192.168.0.0/16"),  # RFC1918
    ipaddress.ip_network("198.18.0.0/15"),  # Benchmarking
    ipaddress.ip_network("224.0.0.0/4"),  # Multicast IPv4
    ipaddress.ip_network("240.0.0.0/4"),  # Reserved, broadcast
    ipaddress.ip_network("::/128"),  # Unspecified IPv6
    ipaddress.ip_network("::1/128"),  # Loopback IPv6
    ipaddress.ip_network("fc00::/7"),  # Unique local IPv6
    ipaddress.ip_network("fe80::/10"),  # Link-local IPv6
    ipaddress.ip_network("ff00::/8"),  # Multicast IPv6
]


def blocked_ip_reason(ip_str: str) -> Optional[str]:
    """Return why an address is blocked, or None if it is publicly routable.

    Unparseable input is treated as blocked.
    """
    try:
        ip = ipaddress.ip_address(ip_str.split("%", 1)[0])
    except ValueError:
        return f"unparseable address {ip_str!r}"

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        inner = blocked_ip_reason(str(ip.ipv4_mapped))
        return f"IPv4-mapped {inner}" if inner else None

    if str(ip) in CLOUD_METADATA_HOSTS:
        return "cloud metadata endpoint"
    for network in BLOCKED_IP_RANGES:
        if ip.version == network.version and ip in network:
            return f"blocked address range {network}"
    return None


def resolve_hostname(hostname: str) -> list[str]:
    """Resolve a hostname to its addresses using the system resolver.

    Raises:
        SSRFError: If resolution fails (unresolvable hosts are refused).
    """
    try:
        addr_info = socket.getaddrinfo(hostname, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
    except (socket.gaierror, OSError) as e:
        raise SSRFError(hostname, f"DNS resolution failed: {e}") from e
    return list({str(info[4][0]) for info in addr_info})


async def resolve_hostname_async(hostname: str) -> list[str]:
    """Resolve a hostname on the running loop's resolver (non-blocking).

    Raises:
        SSRFError: If resolution fails (unresolvable hosts are refused).
    """
    loop = asyncio.get_running_loop()
    try:
        addr_info = await loop.getaddrinfo(hostname, None, family=socket.AF_UNSPEC, type=socket.SOCK_STREAM)
    except (socket.gaierror, OSError) as e:
        raise SSRFError(hostname, f"DNS resolution failed: {e}") from e
    return list({str(info[4][0]) for info in addr_info})


def _normalize_hostname(hostname: str) -> str:
    """Normalize hostname for validation (IDN/punycode, trailing dot)."""
    hostname = hostname.rstrip(".")
    try:
        return hostname.encode("idna").decode("ascii").lower()
    except UnicodeError:
        return hostname.lower()


def _numeric_host_address(url: str, hostname: str) -> Optional[str]:
    """Canonical IPv4 address for shorthand numeric hosts, else None.

    ``127.1``, ``2130706433`` and ``0x7f000001`` are all loopback to the
    socket layer even though ``ipaddress`` refuses to parse them.
    """
    if not _NUMERIC_HOST_RE.match(hostname):
        return None
    try:
        packed = socket.inet_aton(hostname)
    except OSError as e:
        raise SSRFError(url, f"unparseable numeric host {hostname}") from e
    return str(ipaddress.IPv4Address(packed))


def _validate_url_base(
    url: str,
    *,
    require_https: bool,
    trusted_http_hosts: Iterable[str],
) -> Optional[str]:
    """Checks that need no DNS. Returns the hostname to resolve, or None for IP literals."""
    if len(url) > MAX_URL_LENGTH:
        raise SSRFError(url[:100] + "...", f"URL too long: {len(url)} chars (max {MAX_URL_LENGTH})")

    try:
        parsed = urlparse(url)
        raw_hostname = parsed.hostname
    except ValueError as e:
        raise SSRFError(url, f"unparseable URL: {e}") from e

    scheme = parsed.scheme.lower()
    if scheme not in ("http", "https"):
        raise SSRFError(url, f"scheme {parsed.scheme!r} not allowed")

    if not raw_hostname:
        raise SSRFError(url, "no hostname")
    hostname = _normalize_hostname(raw_hostname)

    if hostname in CLOUD_METADATA_HOSTS:
        raise SSRFError(url, "cloud metadata endpoint")

    if hostname in BLOCKED_HOSTS:
        raise SSRFError(url, f"blocked host {hostname}")

    for pattern in BLOCKED_HOSTNAME_PATTERNS:
        if pattern.search(hostname):
            raise SSRFError(url, f"blocked internal domain {hostname}")

    if scheme == "http" and require_https:
        trusted = {_normalize_hostname(h) for h in trusted_http_hosts}
        if hostname not in trusted:
            raise SSRFError(url, "HTTPS required for untrusted hosts")

    try:
        address = str(ipaddress.ip_address(hostname))
    except ValueError:
        address = _numeric_host_address(url, hostname)

    if address is None:
        return hostname
    reason = blocked_ip_reason(address)
    if reason:
        raise SSRFError(url, reason)
    return None


def _check_resolved(url: str, hostname: str, addresses: Iterable[str]) -> None:
    addresses = list(addresses)
    if not addresses:
        raise SSRFError(url, f"hostname {hostname} resolved to no addresses")
    for address in addresses:
        reason = blocked_ip_reason(address)
        if reason:
            raise SSRFError(url, f"hostname {hostname} resolves to {address} ({reason})")


def validate_image_url(
    url: str,
    *,
    resolver: Optional[Resolver] = None,
    resolve_dns: bool = True,
    require_https: bool = True,
    trusted_http_hosts: Iterable[str] = (),
) -> None:
    """Validate a URL for safe fetching (SSRF protection).

    Address checks on IP literals, including shorthand numeric forms, run
    whether or not DNS resolution is enabled.

    Args:
        url: The URL to validate.
        resolver: Hostname -> addresses function (default: system resolver).
        resolve_dns: Whether to resolve hostnames and validate every address.
        require_https: Refuse plain http except for ``trusted_http_hosts``.
        trusted_http_hosts: Hosts allowed over plain http.

    Raises:
        SSRFError: If the URL is not safe to fetch.
    """
    hostname = _validate_url_base(url, require_https=require_https, trusted_http_hosts=trusted_http_hosts)
    if resolve_dns and hostname:
        _check_resolved(url, hostname, (resolver or resolve_hostname)(hostname))


async def validate_image_url_async(
    url: str,
    *,
    resolver: Optional[Resolver] = None,
    resolve_dns: bool = True,
    require_https: bool = True,
    trusted_http_hosts: Iterable[str] = (),
) -> None:
    """Async variant of ``validate_image_url`` that never blocks the event loop.

    The default resolver uses ``loop.getaddrinfo``. An injected resolver runs
    in a worker thread; if it returns an awaitable, that is awaited here.
    """
    hostname = _validate_url_base(url, require_https=require_https, trusted_http_hosts=trusted_http_hosts)
    if not (resolve_dns and hostname):
        return
    if resolver is None:
        addresses = await resolve_hostname_async(hostname)
    else:
        addresses = await asyncio.to_thread(resolver, hostname)
        if inspect.isawaitable(addresses):
            addresses = await addresses
    _check_resolved(url, hostname, addresses)
