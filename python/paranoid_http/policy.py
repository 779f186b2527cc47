"""
Address policy: which hosts and IP addresses may be dialed.

A policy is an immutable value. Validations read it without locking, and
every override produces a new policy instead of changing one that may be
in use by an in-flight dial.

Usage:
    from paranoid_http.policy import DEFAULT_POLICY, PolicyBuilder

    DEFAULT_POLICY.is_ip_forbidden("10.1.2.3")      # True
    DEFAULT_POLICY.is_host_forbidden("LocalHost")   # True

    policy = (PolicyBuilder()
        .allow_cidr("10.20.0.0/16")
        .block_host("*.corp.example.com")
        .build())
"""

import abc
import dataclasses
import ipaddress
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Tuple, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

IPV4_BROADCAST = ipaddress.IPv4Address("255.255.255.255")
SUPPORTED_IP_VERSIONS = frozenset({4, 6})


def _must_parse_cidr(cidr: str) -> IPNetwork:
    # Strict: built-in constants are exact network addresses.
    return ipaddress.ip_network(cidr)


DEFAULT_FORBIDDEN_CIDRS: Tuple[IPNetwork, ...] = tuple(
    _must_parse_cidr(cidr)
    for cidr in (
        "10.0.0.0/8",        # private class A
        "172.16.0.0/12",     # private class B
        "192.168.0.0/16",    # private class C
        "192.0.2.0/24",      # test net 1
        "198.51.100.0/24",   # test net 2
        "203.0.113.0/24",    # test net 3
        "192.88.99.0/24",    # 6to4 relay
        "fc00::/7",          # unique local
        "fe80::/10",         # link local
        "2001:db8::/32",     # documentation
        "2001::/32",         # teredo
        "2001:10::/28",      # orchid
        "2002::/16",         # 6to4
    )
)


def parse_cidr(cidr: Union[str, IPNetwork]) -> IPNetwork:
    """Parse a caller-supplied CIDR block.

    Host bits are allowed and masked off, so ``"10.1.2.3/8"`` is the same
    network as ``"10.0.0.0/8"``.

    Raises:
        ValueError: If ``cidr`` is not a valid network.
    """
    if isinstance(cidr, (ipaddress.IPv4Network, ipaddress.IPv6Network)):
        return cidr
    return ipaddress.ip_network(cidr, strict=False)


def ip_of(ip: Union[str, IPAddress]) -> IPAddress:
    """Parse ``ip`` and unwrap IPv4-mapped IPv6 addresses to IPv4.

    ``::ffff:127.0.0.1`` reaches the same host as ``127.0.0.1`` and is
    judged as such.
    """
    address = ipaddress.ip_address(ip) if isinstance(ip, str) else ip
    if address.version == 6 and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


def is_global_unicast(ip: IPAddress) -> bool:
    """Whether ``ip`` is a global unicast address.

    Unspecified, loopback, link-local (unicast and multicast), multicast and
    the IPv4 limited broadcast address are not. Private ranges *are* global
    unicast here; they are handled by the forbidden CIDR list.
    """
    if ip.version == 4 and ip == IPV4_BROADCAST:
        return False
    return not (ip.is_unspecified or ip.is_loopback or ip.is_multicast or ip.is_link_local)


def _normalize_host(host: str) -> str:
    return host.lower().rstrip(".")


class HostRule(abc.ABC):
    """A named rule that marks a literal hostname as forbidden."""

    @abc.abstractmethod
    def matches(self, host: str) -> bool:
        """True if ``host`` is forbidden by this rule."""


@dataclass(frozen=True)
class ExactHost(HostRule):
    """Case-insensitive exact match, ignoring a trailing dot."""

    name: str

    def matches(self, host: str) -> bool:
        return _normalize_host(host) == _normalize_host(self.name)


@dataclass(frozen=True)
class HostSuffix(HostRule):
    """Matches ``domain`` itself and any of its subdomains."""

    domain: str

    def matches(self, host: str) -> bool:
        host = _normalize_host(host)
        domain = _normalize_host(self.domain)
        return host == domain or host.endswith("." + domain)


@dataclass(frozen=True)
class ContainsWhitespace(HostRule):
    """Matches any host with a whitespace character anywhere in it."""

    def matches(self, host: str) -> bool:
        return any(ch.isspace() for ch in host)


def parse_host_rule(pattern: Union[str, HostRule]) -> HostRule:
    """Turn a builder pattern into a host rule.

    ``"*.example.com"`` becomes ``HostSuffix("example.com")``; any other
    string is an ``ExactHost``. Rule instances pass through unchanged.
    """
    if isinstance(pattern, HostRule):
        return pattern
    if not pattern or not pattern.strip():
        raise ValueError("host pattern must not be empty")
    if pattern.startswith("*."):
        return HostSuffix(pattern[2:])
    return ExactHost(pattern)


DEFAULT_HOST_RULES: Tuple[HostRule, ...] = (
    ExactHost("localhost"),
    ContainsWhitespace(),
)


@dataclass(frozen=True)
class IPPolicy:
    """Forbidden and allowed IP ranges.

    Allowed ranges are exceptions: an address inside one is never
    forbidden, whatever else the policy says.
    """

    forbidden: Tuple[IPNetwork, ...] = ()
    allowed: Tuple[IPNetwork, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "forbidden", tuple(parse_cidr(c) for c in self.forbidden))
        object.__setattr__(self, "allowed", tuple(parse_cidr(c) for c in self.allowed))

    def is_forbidden(self, ip: Union[str, IPAddress]) -> bool:
        address = ip_of(ip)
        if any(address in network for network in self.allowed):
            return False
        if not is_global_unicast(address):
            return True
        return any(address in network for network in self.forbidden)


@dataclass(frozen=True)
class HostPolicy:
    """Host rules, evaluated in order."""

    rules: Tuple[HostRule, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "rules", tuple(parse_host_rule(r) for r in self.rules))

    def is_forbidden(self, host: str) -> bool:
        return any(rule.matches(host) for rule in self.rules)


@dataclass(frozen=True)
class AddressPolicy:
    """Immutable rule set consulted for every dial.

    Attributes:
        ip: Forbidden and allowed IP ranges.
        host: Forbidden hostname rules, applied before resolution.
        ip_versions: Address families that may be dialed. ``{4, 6}`` is
            dual-stack; ``{4}`` is the conservative IPv4-only variant.
    """

    ip: IPPolicy = field(default_factory=lambda: IPPolicy(DEFAULT_FORBIDDEN_CIDRS))
    host: HostPolicy = field(default_factory=lambda: HostPolicy(DEFAULT_HOST_RULES))
    ip_versions: FrozenSet[int] = SUPPORTED_IP_VERSIONS

    def __post_init__(self):
        versions = frozenset(self.ip_versions)
        if not versions or not versions <= SUPPORTED_IP_VERSIONS:
            raise ValueError(f"ip_versions must be a non-empty subset of {{4, 6}}, got {set(versions)}")
        object.__setattr__(self, "ip_versions", versions)

    @classmethod
    def default(cls) -> "AddressPolicy":
        """The built-in default policy."""
        return DEFAULT_POLICY

    def is_host_forbidden(self, host: str) -> bool:
        """True if any host rule matches the literal hostname."""
        return self.host.is_forbidden(host)

    def is_ip_forbidden(self, ip: Union[str, IPAddress]) -> bool:
        """True if dialing ``ip`` is not permitted.

        In order: an allowed range wins outright; anything that is not
        global unicast is forbidden; then the forbidden ranges apply.
        """
        return self.ip.is_forbidden(ip)

    def evolve(self, **changes) -> "AddressPolicy":
        """Return a copy with ``changes`` applied, leaving this policy as is."""
        return dataclasses.replace(self, **changes)


DEFAULT_POLICY = AddressPolicy()


class PolicyBuilder:
    """Builder for customized policies.

    Starts from a base policy (the default one unless given) and records
    overrides; ``build()`` returns a new ``AddressPolicy``. Allow rules take
    precedence over block rules.

    Example:
        >>> policy = (PolicyBuilder()
        ...     .block_cidr("100.64.0.0/10")
        ...     .allow_cidr("10.1.1.0/24")
        ...     .block_host("*.internal.example.com")
        ...     .build())
        >>> policy.is_ip_forbidden("10.1.1.7")
        False
    """

    def __init__(self, base: Optional[AddressPolicy] = None):
        if base is None:
            base = DEFAULT_POLICY
        self._forbidden = list(base.ip.forbidden)
        self._allowed = list(base.ip.allowed)
        self._hosts = list(base.host.rules)
        self._versions = set(base.ip_versions)

    def block_cidr(self, *cidrs: Union[str, IPNetwork]) -> "PolicyBuilder":
        """Add forbidden IP ranges (CIDR notation)."""
        self._forbidden.extend(parse_cidr(c) for c in cidrs)
        return self

    def allow_cidr(self, *cidrs: Union[str, IPNetwork]) -> "PolicyBuilder":
        """Add allowed ranges, overriding every forbidding rule."""
        self._allowed.extend(parse_cidr(c) for c in cidrs)
        return self

    def block_host(self, *patterns: Union[str, HostRule]) -> "PolicyBuilder":
        """Add forbidden hostnames.

        Supports wildcards: ``'*.internal.example.com'`` matches the domain
        and any subdomain.
        """
        self._hosts.extend(parse_host_rule(p) for p in patterns)
        return self

    def replace_blocked_cidrs(self, *cidrs: Union[str, IPNetwork]) -> "PolicyBuilder":
        self._forbidden = [parse_cidr(c) for c in cidrs]
        return self

    def replace_allowed_cidrs(self, *cidrs: Union[str, IPNetwork]) -> "PolicyBuilder":
        self._allowed = [parse_cidr(c) for c in cidrs]
        return self

    def replace_blocked_hosts(self, *patterns: Union[str, HostRule]) -> "PolicyBuilder":
        self._hosts = [parse_host_rule(p) for p in patterns]
        return self

    def ipv4_only(self) -> "PolicyBuilder":
        self._versions = {4}
        return self

    def dual_stack(self) -> "PolicyBuilder":
        self._versions = {4, 6}
        return self

    def build(self) -> AddressPolicy:
        return AddressPolicy(
            ip=IPPolicy(forbidden=tuple(self._forbidden), allowed=tuple(self._allowed)),
            host=HostPolicy(rules=tuple(self._hosts)),
            ip_versions=frozenset(self._versions),
        )
