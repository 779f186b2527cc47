"""
Tests for destination validation.

Run with: pytest tests/test_validator.py
"""

import asyncio
import time

import pytest

from conftest import AsyncFakeResolver, FakeResolver, HangingResolver, SlowResolver
from paranoid_http import (
    ForbiddenAddress,
    ForbiddenHost,
    InvalidAddress,
    NoSafeAddress,
    ParanoidError,
    PolicyBuilder,
    ResolutionFailure,
    ResolutionTimeout,
    SsrfBlocked,
    ValidatedAddress,
    validate_address,
    validate_address_async,
)
from paranoid_http.validator import join_host_port, split_host_port


class TestSplitHostPort:
    """Tests for host:port parsing."""

    @pytest.mark.parametrize("hostport,expected", [
        ("example.org:80", ("example.org", 80)),
        ("127.0.0.1:0", ("127.0.0.1", 0)),
        ("[::1]:443", ("::1", 443)),
        ("[fe80::1%eth0]:8080", ("fe80::1%eth0", 8080)),
        ("host:65535", ("host", 65535)),
    ])
    def test_valid(self, hostport, expected):
        assert split_host_port(hostport) == expected

    @pytest.mark.parametrize("hostport", [
        "example.org",
        "example.org:",
        ":80",
        "::1:80",
        "[::1]80",
        "[::1",
        "[::1]",
        "a]b:80",
        "host:http",
        "host:-1",
        "host:65536",
        "host:８０",
    ])
    def test_invalid(self, hostport):
        with pytest.raises(InvalidAddress):
            split_host_port(hostport)

    def test_join_brackets_ipv6(self):
        assert join_host_port("::1", 80) == "[::1]:80"
        assert join_host_port("10.0.0.1", 80) == "10.0.0.1:80"

    def test_non_string(self):
        with pytest.raises(InvalidAddress):
            validate_address(("example.org", 80))


class TestLiteralAddresses:
    """Literal IPs are judged directly and never resolved."""

    @pytest.mark.parametrize("hostport,ip", [
        ("127.0.0.1:80", "127.0.0.1"),
        ("192.168.1.10:443", "192.168.1.10"),
        ("169.254.169.254:80", "169.254.169.254"),
        ("0.0.0.0:80", "0.0.0.0"),
        ("[::1]:80", "::1"),
    ])
    def test_forbidden_literal(self, hostport, ip):
        resolver = FakeResolver()
        with pytest.raises(ForbiddenAddress) as exc_info:
            validate_address(hostport, resolver=resolver)
        assert exc_info.value.ip == ip
        assert resolver.lookups == []

    def test_mapped_loopback_literal(self):
        with pytest.raises(ForbiddenAddress):
            validate_address("[::ffff:127.0.0.1]:80", resolver=FakeResolver())

    def test_public_literal(self):
        resolver = FakeResolver()
        address = validate_address("8.8.8.8:53", resolver=resolver)
        assert address == ValidatedAddress(ip="8.8.8.8", port=53, host="8.8.8.8")
        assert resolver.lookups == []

    def test_public_ipv6_literal(self):
        address = validate_address("[2606:4700:4700::1111]:443", resolver=FakeResolver())
        assert address.ip == "2606:4700:4700::1111"
        assert address.version == 6
        assert str(address) == "[2606:4700:4700::1111]:443"

    def test_allowed_literal(self, loopback_policy):
        address = validate_address("127.0.0.1:8080", loopback_policy)
        assert address.ip == "127.0.0.1"

    def test_literal_of_disabled_family(self):
        policy = PolicyBuilder().ipv4_only().build()
        with pytest.raises(NoSafeAddress):
            validate_address("[2606:4700:4700::1111]:443", policy)


class TestHostnames:
    """Symbolic hosts: host rules first, then every resolved address."""

    def test_host_rule_checked_before_resolution(self):
        resolver = FakeResolver({"localhost": ["93.184.216.34"]})
        with pytest.raises(ForbiddenHost):
            validate_address("localhost:80", resolver=resolver)
        assert resolver.lookups == []

    def test_whitespace_host(self):
        resolver = FakeResolver()
        with pytest.raises(ForbiddenHost):
            validate_address("bad host:80", resolver=resolver)
        assert resolver.lookups == []

    def test_public_host(self, public_resolver):
        address = validate_address("example.org:443", resolver=public_resolver)
        assert address.ip == "93.184.216.34"
        assert address.port == 443
        assert address.host == "example.org"
        assert public_resolver.lookups == ["example.org"]

    def test_first_candidate_in_resolver_order(self):
        resolver = FakeResolver({"example.org": ["93.184.216.35", "93.184.216.34"]})
        assert validate_address("example.org:80", resolver=resolver).ip == "93.184.216.35"

    def test_one_bad_candidate_rejects_all(self):
        resolver = FakeResolver({"rebind.example": ["93.184.216.34", "127.0.0.1"]})
        with pytest.raises(ForbiddenAddress) as exc_info:
            validate_address("rebind.example:80", resolver=resolver)
        assert exc_info.value.ip == "127.0.0.1"
        assert exc_info.value.host == "rebind.example"

    def test_candidates_of_other_family_are_skipped(self):
        policy = PolicyBuilder().ipv4_only().build()
        resolver = FakeResolver({"mixed.example": ["::1", "93.184.216.34"]})
        address = validate_address("mixed.example:80", policy, resolver=resolver)
        assert address.ip == "93.184.216.34"

    def test_only_unsupported_family(self):
        policy = PolicyBuilder().ipv4_only().build()
        resolver = FakeResolver({"v6.example": ["2606:4700:4700::1111"]})
        with pytest.raises(NoSafeAddress):
            validate_address("v6.example:80", policy, resolver=resolver)

    def test_versions_restrict_family(self, public_resolver):
        address = validate_address("dual.example.org:80", resolver=public_resolver, versions={4})
        assert address.ip == "93.184.216.34"
        address = validate_address("dual.example.org:80", resolver=public_resolver)
        assert address.version == 6

    def test_unparseable_candidate_is_forbidden(self):
        resolver = FakeResolver({"odd.example": ["not-an-ip"]})
        with pytest.raises(ForbiddenAddress):
            validate_address("odd.example:80", resolver=resolver)

    def test_empty_answer(self):
        resolver = FakeResolver({"empty.example": []})
        with pytest.raises(ResolutionFailure):
            validate_address("empty.example:80", resolver=resolver)

    def test_lookup_error(self):
        with pytest.raises(ResolutionFailure) as exc_info:
            validate_address("missing.example:80", resolver=FakeResolver())
        assert exc_info.value.host == "missing.example"
        assert isinstance(exc_info.value.__cause__, OSError)

    def test_allowed_private_answer(self):
        policy = PolicyBuilder().allow_cidr("10.1.1.0/24").build()
        resolver = FakeResolver({"intranet.example": ["10.1.1.5"]})
        assert validate_address("intranet.example:80", policy, resolver).ip == "10.1.1.5"


class TestLookupTimeout:
    """The lookup gives up once the caller's timeout runs out."""

    def test_slow_lookup_times_out(self):
        resolver = SlowResolver({"slow.example": ["93.184.216.34"]}, delay=1.0)
        started = time.monotonic()
        with pytest.raises(ResolutionTimeout) as exc_info:
            validate_address("slow.example:80", resolver=resolver, timeout=0.1)
        assert time.monotonic() - started < 0.8
        assert exc_info.value.host == "slow.example"
        assert exc_info.value.timeout == 0.1

    def test_lookup_within_timeout(self):
        resolver = SlowResolver({"slow.example": ["93.184.216.34"]}, delay=0.05)
        address = validate_address("slow.example:80", resolver=resolver, timeout=2.0)
        assert address.ip == "93.184.216.34"

    def test_timeout_is_a_resolution_failure(self):
        assert issubclass(ResolutionTimeout, ResolutionFailure)

    @pytest.mark.asyncio
    async def test_async_lookup_times_out(self):
        resolver = HangingResolver()
        started = time.monotonic()
        with pytest.raises(ResolutionTimeout):
            await validate_address_async("slow.example:80", resolver=resolver, timeout=0.1)
        assert time.monotonic() - started < 0.8
        assert resolver.started


class TestErrorHierarchy:
    def test_all_refusals_are_paranoid_errors(self):
        for exc_type in (ForbiddenAddress, ForbiddenHost, InvalidAddress, NoSafeAddress, ResolutionFailure):
            assert issubclass(exc_type, ParanoidError)
            assert not issubclass(exc_type, OSError)

    def test_blocked_subclasses(self):
        assert issubclass(ForbiddenAddress, SsrfBlocked)
        assert issubclass(ForbiddenHost, SsrfBlocked)

    def test_messages(self):
        assert "bad ip is detected" in str(ForbiddenAddress("127.0.0.1"))
        assert "bad host is detected" in str(ForbiddenHost("localhost"))


class TestAsyncValidation:
    """Tests for validate_address_async."""

    @pytest.mark.asyncio
    async def test_public_host(self):
        resolver = AsyncFakeResolver({"example.org": ["93.184.216.34"]})
        address = await validate_address_async("example.org:443", resolver=resolver)
        assert address.ip == "93.184.216.34"

    @pytest.mark.asyncio
    async def test_blocks_literal(self):
        with pytest.raises(ForbiddenAddress):
            await validate_address_async("10.0.0.1:80", resolver=AsyncFakeResolver())

    @pytest.mark.asyncio
    async def test_blocks_host_before_lookup(self):
        resolver = AsyncFakeResolver()
        with pytest.raises(ForbiddenHost):
            await validate_address_async("LOCALHOST:80", resolver=resolver)
        assert resolver.lookups == []

    @pytest.mark.asyncio
    async def test_fail_closed(self):
        resolver = AsyncFakeResolver({"rebind.example": ["93.184.216.34", "169.254.169.254"]})
        with pytest.raises(ForbiddenAddress):
            await validate_address_async("rebind.example:80", resolver=resolver)

    @pytest.mark.asyncio
    async def test_lookup_error(self):
        with pytest.raises(ResolutionFailure):
            await validate_address_async("missing.example:80", resolver=AsyncFakeResolver())

    @pytest.mark.asyncio
    async def test_cancellation_aborts_lookup(self):
        resolver = HangingResolver()
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(validate_address_async("slow.example:80", resolver=resolver), timeout=0.1)
        assert resolver.started
