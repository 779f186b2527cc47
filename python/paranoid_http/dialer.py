"""
Safe dialers: httpcore network backends that only connect to validated
addresses.

``SafeDialer`` sits where httpcore would normally open a socket. It checks
the requested network kind, validates the destination, and asks the wrapped
``Connector`` to connect to the *validated literal IP*. The original
hostname is never handed to the connector, so a DNS answer that changes
between the check and the connect cannot redirect the connection.

Usage:
    import httpcore
    from paranoid_http.dialer import SafeDialer

    pool = httpcore.ConnectionPool(network_backend=SafeDialer())
    pool.request("GET", "https://example.org/")
"""

import logging
import socket
from typing import Iterable, List, Optional, Tuple

import httpcore

from .errors import UnsupportedNetwork
from .policy import DEFAULT_POLICY, AddressPolicy
from .validator import ValidatedAddress, join_host_port, validate_address, validate_address_async

logger = logging.getLogger(__name__)

DEFAULT_NETWORKS = ("tcp", "tcp4", "tcp6")

# Address families each network kind may use; None defers to the policy.
NETWORK_VERSIONS = {
    "tcp": None,
    "tcp4": (4,),
    "tcp6": (6,),
}


def keep_alive_options(interval: Optional[float]) -> List[Tuple[int, int, int]]:
    """Socket options enabling TCP keep-alive packets every ``interval`` seconds."""
    if not interval or interval <= 0:
        return []
    seconds = max(1, int(interval))
    options = [(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)]
    if hasattr(socket, "TCP_KEEPIDLE"):
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, seconds))
    elif hasattr(socket, "TCP_KEEPALIVE"):
        # macOS
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPALIVE, seconds))
    if hasattr(socket, "TCP_KEEPINTVL"):
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, seconds))
    return options


def _shortest(*timeouts: Optional[float]) -> Optional[float]:
    bounded = [t for t in timeouts if t is not None]
    return min(bounded) if bounded else None


def _check_networks(networks: Iterable[str]) -> Tuple[str, ...]:
    networks = tuple(networks)
    unknown = [n for n in networks if n not in NETWORK_VERSIONS]
    if unknown:
        raise ValueError(f"cannot dial networks {unknown}; known networks are {list(NETWORK_VERSIONS)}")
    return networks


def _versions_for(network: str, networks: Tuple[str, ...]):
    if network not in networks:
        logger.warning("ssrf: refused to dial unsupported network %r", network)
        raise UnsupportedNetwork(network, networks)
    return NETWORK_VERSIONS[network]


def _strip_brackets(host: str) -> str:
    if host.startswith("[") and host.endswith("]"):
        return host[1:-1]
    return host


class Connector:
    """Low-level connector used by ``SafeDialer``.

    Opens TCP connections through an httpcore backend, bounding every
    connect by ``timeout`` and enabling TCP keep-alive.

    Args:
        timeout: Upper bound for establishing the TCP connection, in
            seconds. A shorter timeout from the caller still applies.
        keep_alive: TCP keep-alive interval in seconds; 0 or None disables.
        backend: httpcore backend doing the actual connect (defaults to
            ``httpcore.SyncBackend``).
    """

    def __init__(
        self,
        timeout: Optional[float] = 30.0,
        keep_alive: Optional[float] = 30.0,
        backend: Optional[httpcore.NetworkBackend] = None,
    ):
        self.timeout = timeout
        self.keep_alive = keep_alive
        self.backend = backend if backend is not None else httpcore.SyncBackend()

    def connect(
        self,
        address: ValidatedAddress,
        *,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        socket_options=None,
    ) -> httpcore.NetworkStream:
        options = list(socket_options or []) + keep_alive_options(self.keep_alive)
        return self.backend.connect_tcp(
            address.ip,
            address.port,
            timeout=_shortest(timeout, self.timeout),
            local_address=local_address,
            socket_options=options,
        )

    def sleep(self, seconds: float) -> None:
        self.backend.sleep(seconds)


class AsyncConnector:
    """Async counterpart of ``Connector`` (defaults to ``httpcore.AnyIOBackend``)."""

    def __init__(
        self,
        timeout: Optional[float] = 30.0,
        keep_alive: Optional[float] = 30.0,
        backend: Optional[httpcore.AsyncNetworkBackend] = None,
    ):
        self.timeout = timeout
        self.keep_alive = keep_alive
        self.backend = backend if backend is not None else httpcore.AnyIOBackend()

    async def connect(
        self,
        address: ValidatedAddress,
        *,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        socket_options=None,
    ) -> httpcore.AsyncNetworkStream:
        options = list(socket_options or []) + keep_alive_options(self.keep_alive)
        return await self.backend.connect_tcp(
            address.ip,
            address.port,
            timeout=_shortest(timeout, self.timeout),
            local_address=local_address,
            socket_options=options,
        )

    async def sleep(self, seconds: float) -> None:
        await self.backend.sleep(seconds)


class SafeDialer(httpcore.NetworkBackend):
    """httpcore network backend that validates every destination.

    Args:
        policy: Address policy (defaults to ``DEFAULT_POLICY``).
        connector: Low-level connector (defaults to ``Connector()``).
        resolver: Resolver for symbolic hosts (defaults to the system one).
        networks: Network kinds that may be dialed. Use ``("tcp", "tcp4")``
            together with an IPv4-only policy for the conservative variant.
    """

    def __init__(
        self,
        policy: Optional[AddressPolicy] = None,
        connector: Optional[Connector] = None,
        resolver=None,
        networks: Iterable[str] = DEFAULT_NETWORKS,
    ):
        self.policy = policy if policy is not None else DEFAULT_POLICY
        self.connector = connector if connector is not None else Connector()
        self.resolver = resolver
        self.networks = _check_networks(networks)

    def check(self, network: str, hostport: str, timeout: Optional[float] = None) -> ValidatedAddress:
        """Validate a dial without connecting."""
        versions = _versions_for(network, self.networks)
        return validate_address(hostport, self.policy, self.resolver, versions=versions, timeout=timeout)

    def dial(
        self,
        network: str,
        hostport: str,
        *,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        socket_options=None,
    ) -> httpcore.NetworkStream:
        """Validate ``hostport`` and connect to the validated address.

        Raises:
            UnsupportedNetwork: ``network`` is not whitelisted. Raised before
                any resolution.
            ParanoidError: Any validation failure; no connection is attempted.
            ResolutionTimeout: The lookup outlived the dial's timeout (the
                shorter of ``timeout`` and the connector's).
            httpcore.ConnectError: The connector failed to connect.
            httpcore.ConnectTimeout: The connect timed out.
        """
        address = self.check(network, hostport, timeout=_shortest(timeout, self.connector.timeout))
        logger.debug("dialing %s (%s) for %r", address, network, hostport)
        return self.connector.connect(
            address,
            timeout=timeout,
            local_address=local_address,
            socket_options=socket_options,
        )

    def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        socket_options=None,
    ) -> httpcore.NetworkStream:
        return self.dial(
            "tcp",
            join_host_port(_strip_brackets(host), port),
            timeout=timeout,
            local_address=local_address,
            socket_options=socket_options,
        )

    def connect_unix_socket(self, path: str, timeout: Optional[float] = None, socket_options=None):
        raise UnsupportedNetwork("unix", self.networks)

    def sleep(self, seconds: float) -> None:
        self.connector.sleep(seconds)


class AsyncSafeDialer(httpcore.AsyncNetworkBackend):
    """Async counterpart of ``SafeDialer``.

    Resolution runs in the calling task: cancelling it, or letting an
    enclosing timeout expire, aborts the lookup and the dial.
    """

    def __init__(
        self,
        policy: Optional[AddressPolicy] = None,
        connector: Optional[AsyncConnector] = None,
        resolver=None,
        networks: Iterable[str] = DEFAULT_NETWORKS,
    ):
        self.policy = policy if policy is not None else DEFAULT_POLICY
        self.connector = connector if connector is not None else AsyncConnector()
        self.resolver = resolver
        self.networks = _check_networks(networks)

    async def check(self, network: str, hostport: str, timeout: Optional[float] = None) -> ValidatedAddress:
        versions = _versions_for(network, self.networks)
        return await validate_address_async(
            hostport, self.policy, self.resolver, versions=versions, timeout=timeout
        )

    async def dial(
        self,
        network: str,
        hostport: str,
        *,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        socket_options=None,
    ) -> httpcore.AsyncNetworkStream:
        address = await self.check(network, hostport, timeout=_shortest(timeout, self.connector.timeout))
        logger.debug("dialing %s (%s) for %r", address, network, hostport)
        return await self.connector.connect(
            address,
            timeout=timeout,
            local_address=local_address,
            socket_options=socket_options,
        )

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        socket_options=None,
    ) -> httpcore.AsyncNetworkStream:
        return await self.dial(
            "tcp",
            join_host_port(_strip_brackets(host), port),
            timeout=timeout,
            local_address=local_address,
            socket_options=socket_options,
        )

    async def connect_unix_socket(self, path: str, timeout: Optional[float] = None, socket_options=None):
        raise UnsupportedNetwork("unix", self.networks)

    async def sleep(self, seconds: float) -> None:
        await self.connector.sleep(seconds)
