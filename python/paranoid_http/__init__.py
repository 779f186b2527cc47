# paranoid_http Python package
# HTTP clients that refuse to connect to internal addresses (SSRF protection)

from .errors import (
    ForbiddenAddress,
    ForbiddenHost,
    InvalidAddress,
    NoSafeAddress,
    ParanoidError,
    ResolutionFailure,
    ResolutionTimeout,
    SsrfBlocked,
    UnsupportedNetwork,
)
from .policy import (
    DEFAULT_POLICY,
    AddressPolicy,
    ContainsWhitespace,
    ExactHost,
    HostPolicy,
    HostRule,
    HostSuffix,
    IPPolicy,
    PolicyBuilder,
)
from .validator import (
    AsyncSystemResolver,
    SystemResolver,
    ValidatedAddress,
    join_host_port,
    split_host_port,
    validate_address,
    validate_address_async,
)
from .dialer import AsyncConnector, AsyncSafeDialer, Connector, SafeDialer
from .client import default_client, new_async_client, new_client

# Make adapters accessible as paranoid_http.adapters
from . import adapters

__all__ = [
    "ParanoidError",
    "InvalidAddress",
    "SsrfBlocked",
    "ForbiddenHost",
    "ForbiddenAddress",
    "UnsupportedNetwork",
    "ResolutionFailure",
    "ResolutionTimeout",
    "NoSafeAddress",
    "DEFAULT_POLICY",
    "AddressPolicy",
    "IPPolicy",
    "HostPolicy",
    "HostRule",
    "ExactHost",
    "HostSuffix",
    "ContainsWhitespace",
    "PolicyBuilder",
    "ValidatedAddress",
    "SystemResolver",
    "AsyncSystemResolver",
    "split_host_port",
    "join_host_port",
    "validate_address",
    "validate_address_async",
    "Connector",
    "AsyncConnector",
    "SafeDialer",
    "AsyncSafeDialer",
    "new_client",
    "new_async_client",
    "default_client",
    "adapters",
]
