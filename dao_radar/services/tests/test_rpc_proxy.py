"""RPC proxy: rate limiting, allowlist and forwarding."""
import json

import httpx
import pytest

from ..rpc_proxy import RpcProxy, TokenBucketLimiter, client_ip_from_headers, validate_rpc_body
from ...exceptions import ForbiddenMethodError, InvalidInputError, RateLimitError, UpstreamError

UPSTREAM = "https://rpc.example/?api-key=secret"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def make_proxy(handler, limiter=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RpcProxy(http_client=client, upstream_url=UPSTREAM, limiter=limiter, timeout=1.0)


class TestTokenBucketLimiter:
    def test_capacity_then_refill(self):
        clock = FakeClock()
        limiter = TokenBucketLimiter(capacity=3, refill_rate=1, clock=clock)
        assert [limiter.allow("ip") for _ in range(4)] == [True, True, True, False]
        assert limiter.retry_after("ip") == pytest.approx(1.0)
        clock.now += 1
        assert limiter.allow("ip")
        assert not limiter.allow("ip")

    def test_keys_are_independent(self):
        limiter = TokenBucketLimiter(capacity=1, refill_rate=1, clock=FakeClock())
        assert limiter.allow("a")
        assert limiter.allow("b")
        assert not limiter.allow("a")

    def test_stale_buckets_are_cleaned(self):
        clock = FakeClock()
        limiter = TokenBucketLimiter(capacity=5, refill_rate=1, clock=clock)
        limiter.allow("old")
        clock.now += 200
        limiter.allow("recent")
        clock.now += 100
        limiter.allow("recent")
        assert len(limiter) == 1


class TestValidateRpcBody:
    def test_allowed(self):
        assert validate_rpc_body({"jsonrpc": "2.0", "id": 1, "method": "getAccountInfo"}) == "getAccountInfo"

    @pytest.mark.parametrize("body", [None, [], "getAccountInfo", {"id": 1}, {"method": ""}])
    def test_malformed(self, body):
        with pytest.raises(InvalidInputError):
            validate_rpc_body(body)

    def test_forbidden(self):
        with pytest.raises(ForbiddenMethodError) as exc_info:
            validate_rpc_body({"method": "requestAirdrop"})
        assert exc_info.value.code == 403


class TestRpcProxy:
    @pytest.mark.asyncio
    async def test_forwards_body_unchanged(self):
        seen = []

        def handler(request):
            seen.append((str(request.url), json.loads(request.content)))
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 7, "result": {"value": None}})

        proxy = make_proxy(handler)
        body = {"jsonrpc": "2.0", "id": 7, "method": "getAccountInfo", "params": ["abc"]}

        result = await proxy.relay(body)

        assert result == {"jsonrpc": "2.0", "id": 7, "result": {"value": None}}
        assert seen == [(UPSTREAM, body)]

    @pytest.mark.asyncio
    async def test_rate_limited_before_upstream(self):
        calls = []
        proxy = make_proxy(
            lambda request: calls.append(request) or httpx.Response(200, json={}),
            limiter=TokenBucketLimiter(capacity=1, refill_rate=0.5, clock=FakeClock()),
        )
        body = {"method": "getSlot"}
        proxy.admit("9.9.9.9")
        await proxy.relay(body)
        with pytest.raises(RateLimitError) as exc_info:
            proxy.admit("9.9.9.9")
        assert exc_info.value.retry_after == pytest.approx(2.0)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_forbidden_method_not_forwarded(self):
        proxy = make_proxy(lambda request: pytest.fail("must not forward"))
        with pytest.raises(ForbiddenMethodError):
            await proxy.relay({"method": "requestAirdrop"})

    @pytest.mark.asyncio
    async def test_upstream_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        proxy = make_proxy(handler)
        with pytest.raises(UpstreamError):
            await proxy.relay({"method": "getSlot"})

    @pytest.mark.asyncio
    async def test_upstream_non_json(self):
        proxy = make_proxy(lambda request: httpx.Response(502, content=b"bad gateway"))
        with pytest.raises(UpstreamError):
            await proxy.relay({"method": "getSlot"})


def test_client_ip_from_headers():
    assert client_ip_from_headers("203.0.113.5, 10.0.0.1", "127.0.0.1") == "203.0.113.5"
    assert client_ip_from_headers(None, "127.0.0.1") == "127.0.0.1"
    assert client_ip_from_headers("", None) == "unknown"

    def test_injected_empty_limiter_is_kept(self):
        limiter = TokenBucketLimiter(capacity=1, refill_rate=0.5, clock=FakeClock())
        assert len(limiter) == 0

        proxy = make_proxy(lambda request: httpx.Response(200, json={}), limiter=limiter)

        assert proxy.limiter is limiter
        proxy.admit("5.5.5.5")
        with pytest.raises(RateLimitError):
            proxy.admit("5.5.5.5")
