"""
SSRF-safe transports for httpx.

Usage:
    from paranoid_http.adapters import safe_httpx_client, safe_httpx_async_client

    # Sync
    client = safe_httpx_client()
    response = client.get(user_url)

    # Async
    async with safe_httpx_async_client() as client:
        response = await client.get(user_url)
"""

from typing import Optional

import httpx

from paranoid_http.dialer import AsyncSafeDialer, SafeDialer
from paranoid_http.policy import AddressPolicy


class SafeTransport(httpx.HTTPTransport):
    """httpx transport whose connections are opened by a ``SafeDialer``.

    The dialer replaces httpcore's network backend, so the check happens
    at connect time and the socket goes to the validated IP. TLS still
    uses the request's hostname for SNI and certificate verification.
    Proxied transports (``proxy=...``) dial the proxy through the same
    dialer.

    Args:
        policy: Address policy for a dialer created here. Ignored when
            ``dialer`` is given.
        dialer: The dialer to use (defaults to ``SafeDialer(policy)``).
        **kwargs: Passed to ``httpx.HTTPTransport``.
    """

    def __init__(
        self,
        policy: Optional[AddressPolicy] = None,
        *,
        dialer: Optional[SafeDialer] = None,
        **kwargs,
    ):
        self.dialer = dialer if dialer is not None else SafeDialer(policy=policy)
        super().__init__(**kwargs)
        self._pool._network_backend = self.dialer


class AsyncSafeTransport(httpx.AsyncHTTPTransport):
    """Async httpx transport whose connections are opened by an ``AsyncSafeDialer``."""

    def __init__(
        self,
        policy: Optional[AddressPolicy] = None,
        *,
        dialer: Optional[AsyncSafeDialer] = None,
        **kwargs,
    ):
        self.dialer = dialer if dialer is not None else AsyncSafeDialer(policy=policy)
        super().__init__(**kwargs)
        self._pool._network_backend = self.dialer


def safe_httpx_client(
    policy: Optional[AddressPolicy] = None,
    **kwargs,
) -> httpx.Client:
    """Create an httpx.Client with SSRF protection.

    All connections made by this client, including connections to proxies
    taken from the environment, are validated and pinned to the validated
    IP address.

    Args:
        policy: The address policy (defaults to ``DEFAULT_POLICY``)
        **kwargs: Additional arguments passed to ``new_client``

    Returns:
        A configured httpx.Client

    Example:
        >>> client = safe_httpx_client()
        >>> response = client.get("https://example.com/api")
    """
    from paranoid_http.client import new_client

    client, _, _ = new_client(policy, **kwargs)
    return client


def safe_httpx_async_client(
    policy: Optional[AddressPolicy] = None,
    **kwargs,
) -> httpx.AsyncClient:
    """Create an httpx.AsyncClient with SSRF protection.

    Example:
        >>> async with safe_httpx_async_client() as client:
        ...     response = await client.get("https://example.com/api")
    """
    from paranoid_http.client import new_async_client

    client, _, _ = new_async_client(policy, **kwargs)
    return client
