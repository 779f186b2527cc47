"""
Exception hierarchy for paranoid_http.

None of these derive from OSError, so HTTP stacks that retry or wrap
connection errors (urllib3, requests, aiohttp) let them reach the caller
unchanged.
"""

from typing import Optional


class ParanoidError(Exception):
    """Base exception for all paranoid_http errors.

    Catch this to handle any refusal to dial generically.
    """


class InvalidAddress(ParanoidError):
    """The destination is not a syntactically valid host:port pair."""

    def __init__(self, hostport: str, reason: str):
        self.hostport = hostport
        self.reason = reason
        super().__init__(f"invalid address {hostport!r}: {reason}")


class SsrfBlocked(ParanoidError):
    """Destination host or address is blocked by policy."""


class ForbiddenHost(SsrfBlocked):
    """The hostname matches a forbidden host rule."""

    def __init__(self, host: str):
        self.host = host
        super().__init__(f"bad host is detected: {host!r}")


class ForbiddenAddress(SsrfBlocked):
    """A literal or resolved IP address is forbidden.

    Raised for the whole resolution when any one of the resolved
    candidates is forbidden.
    """

    def __init__(self, ip: str, host: Optional[str] = None):
        self.ip = ip
        self.host = host if host is not None else ip
        if self.host != ip:
            message = f"bad ip is detected: {ip} (resolved from {self.host!r})"
        else:
            message = f"bad ip is detected: {ip}"
        super().__init__(message)


class UnsupportedNetwork(ParanoidError):
    """Dial requested for a network kind outside the whitelist."""

    def __init__(self, network: str, supported=()):
        self.network = network
        self.supported = tuple(supported)
        if self.supported:
            message = f"unsupported network {network!r} (supported: {', '.join(self.supported)})"
        else:
            message = f"unsupported network {network!r}"
        super().__init__(message)


class ResolutionFailure(ParanoidError):
    """The hostname could not be resolved, or resolved to nothing."""

    def __init__(self, host: str, reason: str = "no addresses returned"):
        self.host = host
        super().__init__(f"fail to lookup ip addr: {host!r}: {reason}")


class ResolutionTimeout(ResolutionFailure):
    """The lookup did not finish within the dial's timeout."""

    def __init__(self, host: str, timeout: float):
        self.timeout = timeout
        super().__init__(host, f"lookup timed out after {timeout}s")


class NoSafeAddress(ParanoidError):
    """No candidate address of a supported family is left to dial."""

    def __init__(self, host: str):
        self.host = host
        super().__init__(f"no address of a supported family for {host!r}")
