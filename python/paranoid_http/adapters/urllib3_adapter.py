"""
SSRF-safe adapter for urllib3.

Usage:
    from paranoid_http.adapters import safe_urllib3_pool

    pool = safe_urllib3_pool()
    response = pool.request("GET", "https://example.com/api")
    print(response.data)
"""

import socket
from typing import Optional

import httpcore
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.exceptions import ConnectTimeoutError, NewConnectionError
from urllib3.poolmanager import PoolManager, ProxyManager

from paranoid_http.dialer import SafeDialer
from paranoid_http.policy import AddressPolicy
from paranoid_http.validator import join_host_port


class _SafeConnectionMixin:
    """Opens the connection's socket through a ``SafeDialer``.

    Only the socket is replaced; the TLS layer keeps using the original
    hostname for SNI and certificate checks.
    """

    def __init__(self, *args, dialer: Optional[SafeDialer] = None, **kwargs):
        self.dialer = dialer if dialer is not None else SafeDialer()
        super().__init__(*args, **kwargs)

    def _new_conn(self) -> socket.socket:
        timeout = self.timeout if isinstance(self.timeout, (int, float)) else None
        local_address = self.source_address[0] if self.source_address else None
        try:
            stream = self.dialer.dial(
                "tcp",
                join_host_port(self._dns_host, self.port),
                timeout=timeout,
                local_address=local_address,
                socket_options=self.socket_options,
            )
        except httpcore.ConnectTimeout as e:
            raise ConnectTimeoutError(
                self, f"Connection to {self.host} timed out. (connect timeout={self.timeout})"
            ) from e
        except httpcore.ConnectError as e:
            raise NewConnectionError(self, f"Failed to establish a new connection: {e}") from e
        return stream.get_extra_info("socket")


class SafeHTTPConnection(_SafeConnectionMixin, HTTPConnection):
    pass


class SafeHTTPSConnection(_SafeConnectionMixin, HTTPSConnection):
    pass


class SafeHTTPConnectionPool(HTTPConnectionPool):
    ConnectionCls = SafeHTTPConnection


class SafeHTTPSConnectionPool(HTTPSConnectionPool):
    ConnectionCls = SafeHTTPSConnection


class _SafeManagerMixin:
    """Hands the manager's dialer to every pool it creates."""

    def __init__(self, *args, policy: Optional[AddressPolicy] = None, dialer: Optional[SafeDialer] = None, **kwargs):
        self.dialer = dialer if dialer is not None else SafeDialer(policy=policy)
        super().__init__(*args, **kwargs)
        self.pool_classes_by_scheme = {
            "http": SafeHTTPConnectionPool,
            "https": SafeHTTPSConnectionPool,
        }

    def _new_pool(self, scheme, host, port, request_context=None):
        pool = super()._new_pool(scheme, host, port, request_context=request_context)
        pool.conn_kw["dialer"] = self.dialer
        return pool


class SafePoolManager(_SafeManagerMixin, PoolManager):
    """urllib3 PoolManager with SSRF protection.

    Every connection is opened by a ``SafeDialer``: the destination is
    validated when the socket is created and the socket goes to the
    validated IP, for HTTP and HTTPS alike.
    """


class SafeProxyManager(_SafeManagerMixin, ProxyManager):
    """urllib3 ProxyManager whose connections to the proxy are validated."""


def safe_urllib3_pool(
    policy: Optional[AddressPolicy] = None,
    **kwargs,
) -> SafePoolManager:
    """Create a urllib3.PoolManager with SSRF protection.

    Args:
        policy: The address policy (defaults to ``DEFAULT_POLICY``)
        **kwargs: Additional arguments passed to urllib3.PoolManager

    Returns:
        A configured SafePoolManager

    Example:
        >>> pool = safe_urllib3_pool()
        >>> response = pool.request("GET", "https://example.com/api")
        >>> print(response.status)
    """
    return SafePoolManager(policy=policy, **kwargs)
