"""
Client factory: httpx clients whose every connection goes through a safe
dialer.

Usage:
    from paranoid_http import default_client, new_client, PolicyBuilder

    response = default_client().get("https://example.org/")

    policy = PolicyBuilder().allow_cidr("10.20.0.0/16").build()
    client, transport, connector = new_client(policy, timeout=10.0)
"""

import ipaddress
import logging
import threading
import urllib.request
from typing import Dict, Iterable, Optional, Tuple

import httpx

from .adapters.httpx_adapter import AsyncSafeTransport, SafeTransport
from .dialer import DEFAULT_NETWORKS, AsyncConnector, AsyncSafeDialer, Connector, SafeDialer
from .policy import DEFAULT_POLICY, AddressPolicy

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_KEEP_ALIVE = 30.0
DEFAULT_TLS_HANDSHAKE_TIMEOUT = 10.0

# Client keyword arguments that configure the transport rather than the client.
_TRANSPORT_KWARGS = ("verify", "cert", "http1", "http2", "limits", "retries", "local_address")


def _ip_version(host: str) -> Optional[int]:
    # NO_PROXY may hold a CIDR block; only the address part is checked.
    try:
        return ipaddress.ip_address(host.split("/")[0]).version
    except ValueError:
        return None


def _no_proxy_pattern(host: str) -> str:
    if "://" in host:
        return host
    version = _ip_version(host)
    if version == 4:
        return f"all://{host}"
    if version == 6:
        return f"all://[{host}]"
    if host.lower() == "localhost":
        return f"all://{host}"
    return f"all://*{host}"


def environment_proxies() -> Dict[str, Optional[str]]:
    """Read proxy settings from the environment as httpx mount patterns.

    ``HTTP_PROXY``, ``HTTPS_PROXY`` and ``ALL_PROXY`` map to proxy URLs;
    every ``NO_PROXY`` entry maps to ``None`` (connect directly). A bare
    ``*`` in ``NO_PROXY`` disables proxies altogether.
    """
    proxies = urllib.request.getproxies()
    no_proxy = [h.strip() for h in proxies.get("no", "").split(",") if h.strip()]
    if "*" in no_proxy:
        return {}

    mounts: Dict[str, Optional[str]] = {}
    for scheme in ("http", "https", "all"):
        url = proxies.get(scheme)
        if url:
            mounts[f"{scheme}://"] = url if "://" in url else f"http://{url}"
    for host in no_proxy:
        mounts[_no_proxy_pattern(host)] = None
    return mounts


def _split_transport_kwargs(client_kwargs: dict) -> dict:
    return {key: client_kwargs.pop(key) for key in _TRANSPORT_KWARGS if key in client_kwargs}


def new_client(
    policy: Optional[AddressPolicy] = None,
    *,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
    connect_timeout: Optional[float] = DEFAULT_CONNECT_TIMEOUT,
    keep_alive: Optional[float] = DEFAULT_KEEP_ALIVE,
    tls_handshake_timeout: Optional[float] = DEFAULT_TLS_HANDSHAKE_TIMEOUT,
    proxies_from_env: bool = True,
    resolver=None,
    networks: Iterable[str] = DEFAULT_NETWORKS,
    **client_kwargs,
) -> Tuple[httpx.Client, SafeTransport, Connector]:
    """Build a paranoid httpx.Client.

    The transport and connector are returned too, so callers can tune
    them further.

    Args:
        policy: Address policy (defaults to ``DEFAULT_POLICY``).
        timeout: Default timeout for every phase of a request.
        connect_timeout: Upper bound for the lookup and for the TCP connect
            of each dial. httpx already hands ``tls_handshake_timeout`` to
            the dialer, and the shorter of the two wins, so with the
            defaults (30s against 10s) this knob has no effect; it matters
            only when set below ``tls_handshake_timeout``.
        keep_alive: TCP keep-alive interval.
        tls_handshake_timeout: httpx's ``connect`` timeout. httpx passes it
            to the dialer (lookup and TCP connect) and to the TLS handshake.
        proxies_from_env: Honour ``*_PROXY`` / ``NO_PROXY``. Proxy
            connections are dialed through the same safe dialer.
        resolver: Resolver for symbolic hosts (defaults to the system one).
        networks: Network kinds the dialer accepts.
        **client_kwargs: Passed to ``httpx.Client``; transport options
            (``verify``, ``cert``, ``http2``, ``limits`` ...) go to the
            transports instead.

    Returns:
        ``(client, transport, connector)``
    """
    connector = Connector(timeout=connect_timeout, keep_alive=keep_alive)
    dialer = SafeDialer(policy=policy, connector=connector, resolver=resolver, networks=networks)
    transport_kwargs = _split_transport_kwargs(client_kwargs)
    transport = SafeTransport(dialer=dialer, **transport_kwargs)

    mounts = {}
    if proxies_from_env:
        for pattern, proxy in environment_proxies().items():
            mounts[pattern] = SafeTransport(dialer=dialer, proxy=proxy, **transport_kwargs) if proxy else None
        if mounts:
            logger.debug("using proxy mounts from environment: %s", sorted(mounts))

    client = httpx.Client(
        transport=transport,
        mounts=mounts,
        timeout=httpx.Timeout(timeout, connect=tls_handshake_timeout),
        # Environment proxies are mounted above with safe transports.
        trust_env=False,
        **client_kwargs,
    )
    return client, transport, connector


def new_async_client(
    policy: Optional[AddressPolicy] = None,
    *,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
    connect_timeout: Optional[float] = DEFAULT_CONNECT_TIMEOUT,
    keep_alive: Optional[float] = DEFAULT_KEEP_ALIVE,
    tls_handshake_timeout: Optional[float] = DEFAULT_TLS_HANDSHAKE_TIMEOUT,
    proxies_from_env: bool = True,
    resolver=None,
    networks: Iterable[str] = DEFAULT_NETWORKS,
    **client_kwargs,
) -> Tuple[httpx.AsyncClient, AsyncSafeTransport, AsyncConnector]:
    """Async counterpart of ``new_client``.

    ``resolver`` must provide ``async resolve(host)``.
    """
    connector = AsyncConnector(timeout=connect_timeout, keep_alive=keep_alive)
    dialer = AsyncSafeDialer(policy=policy, connector=connector, resolver=resolver, networks=networks)
    transport_kwargs = _split_transport_kwargs(client_kwargs)
    transport = AsyncSafeTransport(dialer=dialer, **transport_kwargs)

    mounts = {}
    if proxies_from_env:
        for pattern, proxy in environment_proxies().items():
            mounts[pattern] = AsyncSafeTransport(dialer=dialer, proxy=proxy, **transport_kwargs) if proxy else None

    client = httpx.AsyncClient(
        transport=transport,
        mounts=mounts,
        timeout=httpx.Timeout(timeout, connect=tls_handshake_timeout),
        trust_env=False,
        **client_kwargs,
    )
    return client, transport, connector


_default_client: Optional[httpx.Client] = None
_default_client_lock = threading.Lock()


def default_client() -> httpx.Client:
    """The process-wide client built from ``DEFAULT_POLICY``.

    Built once, on first use, even when several threads ask at the same
    time; later calls return the same instance.
    """
    global _default_client
    if _default_client is None:
        with _default_client_lock:
            if _default_client is None:
                _default_client, _, _ = new_client(DEFAULT_POLICY)
    return _default_client
