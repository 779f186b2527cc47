"""
SSRF-safe adapter for requests.

Usage:
    from paranoid_http.adapters import safe_session

    s = safe_session()
    response = s.get(user_url)  # SSRF-safe!
"""

from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from paranoid_http.adapters.urllib3_adapter import SafePoolManager, SafeProxyManager
from paranoid_http.dialer import SafeDialer
from paranoid_http.errors import UnsupportedNetwork
from paranoid_http.policy import AddressPolicy


class SafeAdapter(HTTPAdapter):
    """requests HTTPAdapter whose connections are opened by a ``SafeDialer``.

    The destination is validated when urllib3 creates the socket, and the
    socket goes to the validated IP. HTTPS keeps working unchanged because
    only the TCP connection is pinned; TLS still verifies the hostname.

    HTTP(S) proxies are dialed through the same dialer. SOCKS proxies are
    refused with ``UnsupportedNetwork``.
    """

    def __init__(
        self,
        policy: Optional[AddressPolicy] = None,
        *,
        dialer: Optional[SafeDialer] = None,
        **kwargs,
    ):
        # Set before HTTPAdapter.__init__, which builds the pool manager.
        self.dialer = dialer if dialer is not None else SafeDialer(policy=policy)
        super().__init__(**kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        self._pool_connections = connections
        self._pool_maxsize = maxsize
        self._pool_block = block
        self.poolmanager = SafePoolManager(
            num_pools=connections,
            maxsize=maxsize,
            block=block,
            dialer=self.dialer,
            **pool_kwargs,
        )

    def proxy_manager_for(self, proxy, **proxy_kwargs):
        if proxy.lower().startswith("socks"):
            raise UnsupportedNetwork(proxy.split(":", 1)[0].lower(), self.dialer.networks)
        if proxy not in self.proxy_manager:
            self.proxy_manager[proxy] = SafeProxyManager(
                proxy,
                dialer=self.dialer,
                proxy_headers=self.proxy_headers(proxy),
                num_pools=self._pool_connections,
                maxsize=self._pool_maxsize,
                block=self._pool_block,
                **proxy_kwargs,
            )
        return self.proxy_manager[proxy]


def safe_session(
    policy: Optional[AddressPolicy] = None,
    max_retries: int = 3,
) -> requests.Session:
    """Create a requests.Session with SSRF protection.

    All HTTP and HTTPS requests made through this session connect only to
    validated addresses, including requests that follow redirects.

    Args:
        policy: The address policy (defaults to ``DEFAULT_POLICY``)
        max_retries: Maximum number of retries for failed requests

    Returns:
        A configured requests.Session

    Example:
        >>> s = safe_session()
        >>> response = s.get("https://example.com/api")
        >>> # This would raise ForbiddenAddress:
        >>> # s.get("http://169.254.169.254/")
    """
    session = requests.Session()

    adapter = SafeAdapter(policy=policy, max_retries=Retry(total=max_retries))
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    return session
