"""
SSRF-safe adapter for aiohttp.

Usage:
    from paranoid_http.adapters import safe_aiohttp_session

    async with safe_aiohttp_session() as session:
        async with session.get(user_url) as response:
            body = await response.text()
"""

import socket
import warnings
from typing import Any, Iterable, Optional

from aiohttp import ClientSession, TCPConnector

from paranoid_http.dialer import DEFAULT_NETWORKS, AsyncSafeDialer
from paranoid_http.policy import AddressPolicy
from paranoid_http.validator import join_host_port


class SafeConnector(TCPConnector):
    """aiohttp connector that only connects to validated addresses.

    Host resolution is replaced by validation: the connector is handed
    exactly one address, the validated IP, so aiohttp cannot connect
    anywhere else. Connections to proxies are resolved the same way.
    """

    def __init__(
        self,
        policy: Optional[AddressPolicy] = None,
        *,
        resolver=None,
        networks: Iterable[str] = DEFAULT_NETWORKS,
        **kwargs,
    ):
        self.dialer = AsyncSafeDialer(policy=policy, resolver=resolver, networks=networks)
        super().__init__(**kwargs)

    async def _resolve_host(
        self,
        host: str,
        port: int,
        traces: Optional[Any] = None,
    ) -> list:
        """Resolve ``host`` to the single validated address."""
        validated = await self.dialer.check("tcp", join_host_port(host.strip("[]"), port))

        return [
            {
                "hostname": host,
                "host": validated.ip,
                "port": validated.port,
                "family": socket.AF_INET if validated.version == 4 else socket.AF_INET6,
                "proto": 0,
                "flags": socket.AI_NUMERICHOST,
            }
        ]


def safe_aiohttp_session(
    policy: Optional[AddressPolicy] = None,
    **kwargs,
) -> ClientSession:
    """Create an aiohttp.ClientSession with SSRF protection.

    Must be called with a running event loop.

    Args:
        policy: The address policy (defaults to ``DEFAULT_POLICY``)
        **kwargs: Additional arguments passed to aiohttp.ClientSession

    Returns:
        A configured aiohttp.ClientSession

    Example:
        >>> async with safe_aiohttp_session() as session:
        ...     async with session.get("https://example.com/api") as response:
        ...         body = await response.text()
    """
    connector = kwargs.pop("connector", None)
    if connector is not None and not isinstance(connector, SafeConnector):
        warnings.warn(
            "Custom connector provided and will be ignored. "
            "Use SafeConnector for SSRF protection.",
            UserWarning,
        )
        connector = None

    if connector is None:
        connector = SafeConnector(policy=policy)
    return ClientSession(connector=connector, **kwargs)
