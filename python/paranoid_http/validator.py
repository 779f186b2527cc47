"""
Turn an untrusted host:port into one policy-approved address to dial.

The validator trusts the caller-supplied hostname as little as possible:
literal IPs are checked directly, symbolic names are checked against the
host rules and then resolved, and *every* resolved candidate must pass the
IP rules before the first one is handed back.

Usage:
    from paranoid_http.validator import validate_address

    address = validate_address("example.org:443")
    sock_target = (address.ip, address.port)
"""

import concurrent.futures
import ipaddress
import logging
import socket
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Tuple

import anyio

from .errors import (
    ForbiddenAddress,
    ForbiddenHost,
    InvalidAddress,
    NoSafeAddress,
    ResolutionFailure,
    ResolutionTimeout,
)
from .policy import DEFAULT_POLICY, AddressPolicy, IPAddress

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidatedAddress:
    """Result of a successful validation.

    Attributes:
        ip: The literal IP address to connect to.
        port: The port from the original host:port.
        host: The host as supplied by the caller (a name or the literal IP).
    """

    ip: str
    port: int
    host: str

    @property
    def version(self) -> int:
        return ipaddress.ip_address(self.ip).version

    def __str__(self) -> str:
        return join_host_port(self.ip, self.port)


def join_host_port(host: str, port) -> str:
    """Combine host and port, bracketing IPv6 literals."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def split_host_port(hostport: str) -> Tuple[str, int]:
    """Split ``host:port`` or ``[ipv6]:port``.

    Raises:
        InvalidAddress: If the string is not a host:port pair or the port
            is not a decimal number between 0 and 65535.
    """
    if not isinstance(hostport, str):
        raise InvalidAddress(repr(hostport), "address must be a string")

    colon = hostport.rfind(":")
    if colon < 0:
        raise InvalidAddress(hostport, "missing port in address")

    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise InvalidAddress(hostport, "missing ']' in address")
        if end + 1 == len(hostport) or hostport[end + 1] != ":":
            raise InvalidAddress(hostport, "missing port in address")
        if end + 1 != colon:
            raise InvalidAddress(hostport, "too many colons in address")
        host = hostport[1:end]
        if "[" in host:
            raise InvalidAddress(hostport, "unexpected '[' in address")
    else:
        host = hostport[:colon]
        if ":" in host:
            raise InvalidAddress(hostport, "too many colons in address")
        if "[" in host or "]" in host:
            raise InvalidAddress(hostport, "unexpected bracket in address")
    if "]" in hostport[colon:]:
        raise InvalidAddress(hostport, "unexpected ']' in address")

    port = hostport[colon + 1:]
    if not host:
        raise InvalidAddress(hostport, "missing host in address")
    if not (port.isascii() and port.isdigit()):
        raise InvalidAddress(hostport, f"invalid port {port!r}")
    number = int(port)
    if number > 65535:
        raise InvalidAddress(hostport, f"port out of range: {number}")
    return host, number


def _parse_ip(text: str) -> Optional[IPAddress]:
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        return None


def _unique(addresses: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for addr in addresses:
        if addr not in seen:
            seen.add(addr)
            ordered.append(addr)
    return ordered


class SystemResolver:
    """Resolve hostnames with the operating system's ``getaddrinfo``.

    Addresses come back in the order the system returned them, with
    duplicates removed.
    """

    def resolve(self, host: str) -> List[str]:
        infos = socket.getaddrinfo(host, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
        return _unique(str(info[4][0]) for info in infos)


class AsyncSystemResolver:
    """Async counterpart of ``SystemResolver``.

    Runs under the caller's task, so cancelling the task (or an enclosing
    anyio cancel scope / ``asyncio.timeout``) aborts the lookup.
    """

    async def resolve(self, host: str) -> List[str]:
        infos = await anyio.getaddrinfo(host, None, family=socket.AF_UNSPEC, type=socket.SOCK_STREAM)
        return _unique(str(info[4][0]) for info in infos)


def _resolve(resolver, host: str, timeout: Optional[float]) -> List[str]:
    """Run a blocking lookup, giving up after ``timeout`` seconds.

    The lookup runs in a worker thread so the caller is released at the
    deadline; a lookup that outlives it finishes in the background and its
    answer is discarded.
    """
    if timeout is None:
        return resolver.resolve(host)
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="paranoid-resolve")
    try:
        future = executor.submit(resolver.resolve, host)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            logger.warning("ssrf: lookup of %r timed out after %ss", host, timeout)
            raise ResolutionTimeout(host, timeout) from None
    finally:
        executor.shutdown(wait=False)


def _allowed_versions(policy: AddressPolicy, versions: Optional[Iterable[int]]) -> FrozenSet[int]:
    if versions is None:
        return policy.ip_versions
    return policy.ip_versions & frozenset(versions)


def _check_literal(
    host: str,
    port: int,
    policy: AddressPolicy,
    versions: FrozenSet[int],
) -> Optional[ValidatedAddress]:
    """Validate a literal IP host, or return None for a symbolic name."""
    ip = _parse_ip(host)
    if ip is None:
        return None
    if ip.is_unspecified or policy.is_ip_forbidden(ip):
        logger.warning("ssrf: blocked literal address %s", ip)
        raise ForbiddenAddress(str(ip))
    if ip.version not in versions:
        logger.warning("ssrf: literal address %s is not of a supported family", ip)
        raise NoSafeAddress(host)
    return ValidatedAddress(ip=str(ip), port=port, host=host)


def _check_host(host: str, policy: AddressPolicy) -> None:
    if policy.is_host_forbidden(host):
        logger.warning("ssrf: blocked host %r", host)
        raise ForbiddenHost(host)


def _choose(
    host: str,
    port: int,
    candidates: List[str],
    policy: AddressPolicy,
    versions: FrozenSet[int],
) -> ValidatedAddress:
    if not candidates:
        logger.warning("ssrf: %r resolved to no addresses", host)
        raise ResolutionFailure(host)

    safe = []
    for candidate in candidates:
        ip = _parse_ip(candidate)
        if ip is None:
            logger.warning("ssrf: unparseable address %r resolved from %r", candidate, host)
            raise ForbiddenAddress(candidate, host)
        if ip.version not in versions:
            continue
        # One bad record rejects the whole answer; a resolver mixing safe
        # and unsafe addresses is not trusted for any of them.
        if policy.is_ip_forbidden(ip):
            logger.warning("ssrf: blocked address %s resolved from %r", ip, host)
            raise ForbiddenAddress(str(ip), host)
        safe.append(ip)

    if not safe:
        logger.warning("ssrf: no address of a supported family for %r in %s", host, candidates)
        raise NoSafeAddress(host)

    address = ValidatedAddress(ip=str(safe[0]), port=port, host=host)
    logger.debug("ssrf: %r validated as %s", host, address)
    return address


def validate_address(
    hostport: str,
    policy: Optional[AddressPolicy] = None,
    resolver=None,
    *,
    versions: Optional[Iterable[int]] = None,
    timeout: Optional[float] = None,
) -> ValidatedAddress:
    """Validate ``hostport`` and pick the single address to connect to.

    Args:
        hostport: Destination as ``host:port`` or ``[ipv6]:port``.
        policy: Rules to apply (defaults to ``DEFAULT_POLICY``).
        resolver: Object with ``resolve(host) -> list[str]`` (defaults to
            ``SystemResolver``). Its order is preserved.
        versions: Further restrict the address families, e.g. ``{4}`` for
            a ``tcp4`` dial. Intersected with ``policy.ip_versions``.
        timeout: Seconds the lookup may take; None waits indefinitely.

    Returns:
        The validated address. The caller must connect to ``ip``, never
        re-resolve ``host``.

    Raises:
        InvalidAddress: ``hostport`` is malformed.
        ForbiddenAddress: The literal IP, or any resolved IP, is forbidden.
        ForbiddenHost: The hostname matches a host rule.
        ResolutionFailure: The lookup failed or returned nothing.
        ResolutionTimeout: The lookup did not finish within ``timeout``.
        NoSafeAddress: No address of a supported family remained.
    """
    if policy is None:
        policy = DEFAULT_POLICY
    host, port = split_host_port(hostport)
    allowed = _allowed_versions(policy, versions)

    literal = _check_literal(host, port, policy, allowed)
    if literal is not None:
        return literal
    _check_host(host, policy)

    if resolver is None:
        resolver = SystemResolver()
    try:
        candidates = _resolve(resolver, host, timeout)
    except (OSError, UnicodeError) as e:
        logger.warning("ssrf: lookup of %r failed: %s", host, e)
        raise ResolutionFailure(host, str(e)) from e
    return _choose(host, port, list(candidates), policy, allowed)


async def validate_address_async(
    hostport: str,
    policy: Optional[AddressPolicy] = None,
    resolver=None,
    *,
    versions: Optional[Iterable[int]] = None,
    timeout: Optional[float] = None,
) -> ValidatedAddress:
    """Async version of ``validate_address``.

    ``resolver`` must provide ``async resolve(host) -> list[str]`` and
    defaults to ``AsyncSystemResolver``. Cancellation of the calling task
    propagates out of the lookup unchanged; running past ``timeout`` raises
    ``ResolutionTimeout``.
    """
    if policy is None:
        policy = DEFAULT_POLICY
    host, port = split_host_port(hostport)
    allowed = _allowed_versions(policy, versions)

    literal = _check_literal(host, port, policy, allowed)
    if literal is not None:
        return literal
    _check_host(host, policy)

    if resolver is None:
        resolver = AsyncSystemResolver()
    try:
        with anyio.move_on_after(timeout) as scope:
            candidates = await resolver.resolve(host)
    except (OSError, UnicodeError) as e:
        logger.warning("ssrf: lookup of %r failed: %s", host, e)
        raise ResolutionFailure(host, str(e)) from e
    if scope.cancelled_caught:
        logger.warning("ssrf: lookup of %r timed out after %ss", host, timeout)
        raise ResolutionTimeout(host, timeout)
    return _choose(host, port, list(candidates), policy, allowed)
