"""
paranoid_http HTTP Client Adapters

SSRF-safe adapters for popular Python HTTP clients.

Every adapter validates the destination when the TCP connection is opened
and connects to the validated IP, so DNS rebinding between the check and
the connect is not possible. TLS is untouched: SNI and certificate
verification still use the hostname from the URL, for HTTP and HTTPS alike.

Usage:
    # httpx (also what paranoid_http.new_client builds)
    from paranoid_http.adapters import safe_httpx_client
    client = safe_httpx_client()
    response = client.get(user_url)

    # httpx async
    from paranoid_http.adapters import safe_httpx_async_client
    async with safe_httpx_async_client() as client:
        response = await client.get(user_url)

    # requests
    from paranoid_http.adapters import safe_session
    s = safe_session()
    response = s.get(user_url)

    # aiohttp
    from paranoid_http.adapters import safe_aiohttp_session
    async with safe_aiohttp_session() as session:
        async with session.get(user_url) as response:
            body = await response.text()

    # urllib3
    from paranoid_http.adapters import safe_urllib3_pool
    pool = safe_urllib3_pool()
    response = pool.request("GET", user_url)
"""

from typing import Optional

from paranoid_http.policy import AddressPolicy

# Lazy imports to avoid requiring all client libraries
__all__ = [
    "safe_session",
    "safe_httpx_client",
    "safe_httpx_async_client",
    "safe_aiohttp_session",
    "safe_urllib3_pool",
]


def safe_session(policy: Optional[AddressPolicy] = None, max_retries: int = 3):
    """Create a requests.Session with SSRF protection.

    Requires: pip install paranoid-http[requests]
    """
    from .requests_adapter import safe_session as _safe_session
    return _safe_session(policy, max_retries=max_retries)


def safe_httpx_client(policy: Optional[AddressPolicy] = None, **kwargs):
    """Create an httpx.Client with SSRF protection."""
    from .httpx_adapter import safe_httpx_client as _safe_httpx_client
    return _safe_httpx_client(policy, **kwargs)


def safe_httpx_async_client(policy: Optional[AddressPolicy] = None, **kwargs):
    """Create an httpx.AsyncClient with SSRF protection."""
    from .httpx_adapter import safe_httpx_async_client as _safe_httpx_async_client
    return _safe_httpx_async_client(policy, **kwargs)


def safe_aiohttp_session(policy: Optional[AddressPolicy] = None, **kwargs):
    """Create an aiohttp.ClientSession with SSRF protection.

    Requires: pip install paranoid-http[aiohttp]
    """
    from .aiohttp_adapter import safe_aiohttp_session as _safe_aiohttp_session
    return _safe_aiohttp_session(policy, **kwargs)


def safe_urllib3_pool(policy: Optional[AddressPolicy] = None, **kwargs):
    """Create a urllib3.PoolManager with SSRF protection.

    Requires: pip install paranoid-http[urllib3]
    """
    from .urllib3_adapter import safe_urllib3_pool as _safe_urllib3_pool
    return _safe_urllib3_pool(policy, **kwargs)
