import asyncio
from types import SimpleNamespace

import httpx
import pytest
from solders.pubkey import Pubkey

from solana_rent_sweeper.config.settings import RPCConfig
from solana_rent_sweeper.execution.solana_client import (
    RateLimitedCaller,
    RetryPolicy,
    SolanaClient,
    is_rate_limit_error,
)
from solana_rent_sweeper.utils.errors import UpstreamRateLimited, UpstreamUnavailable


class FakeTime:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _throttled() -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://rpc.example")
    response = httpx.Response(429, request=request)
    return httpx.HTTPStatusError("Too Many Requests", request=request, response=response)


def test_rate_limit_detection_follows_exception_chain() -> None:
    assert is_rate_limit_error(_throttled())
    assert is_rate_limit_error(RuntimeError("HTTP 429"))
    try:
        try:
            raise _throttled()
        except httpx.HTTPStatusError as inner:
            raise RuntimeError("rpc call failed") from inner
    except RuntimeError as outer:
        assert is_rate_limit_error(outer)
    assert not is_rate_limit_error(RuntimeError("connection reset"))


def test_retry_policy_delays_double_up_to_cap() -> None:
    policy = RetryPolicy(max_attempts=6, base_delay=1.0, max_delay=5.0)
    assert [policy.delay_for(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_throttled_calls_retry_with_exponential_backoff() -> None:
    fake = FakeTime()
    policy = RetryPolicy(max_attempts=4, base_delay=1.0, max_delay=3.0)
    caller = RateLimitedCaller(min_interval=0.0, policy=policy, sleep=fake.sleep, clock=fake.clock)
    attempts = []

    async def always_throttled():
        attempts.append(1)
        raise _throttled()

    with pytest.raises(UpstreamRateLimited):
        asyncio.run(caller.call(always_throttled))
    assert len(attempts) == 4
    assert fake.sleeps == [policy.delay_for(n) for n in range(3)]


def test_throttled_call_recovers() -> None:
    fake = FakeTime()
    caller = RateLimitedCaller(min_interval=0.0, sleep=fake.sleep, clock=fake.clock)
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise RuntimeError("429 Too Many Requests")
        return "ok"

    assert asyncio.run(caller.call(flaky)) == "ok"
    assert fake.sleeps == [1.0, 2.0]


def test_other_failures_are_not_retried() -> None:
    fake = FakeTime()
    caller = RateLimitedCaller(min_interval=0.0, sleep=fake.sleep, clock=fake.clock)
    attempts = []

    async def broken():
        attempts.append(1)
        raise ConnectionError("connection refused")

    with pytest.raises(UpstreamUnavailable):
        asyncio.run(caller.call(broken))
    assert len(attempts) == 1
    assert fake.sleeps == []


def test_429_inside_addresses_is_not_throttling() -> None:
    address = "9xQ4298mKpVwLf3sTn5Yb2Ez7uHgRcD1jWaA6oNiBkM"
    assert not is_rate_limit_error(RuntimeError(f"could not find account {address}"))
    assert not is_rate_limit_error(ValueError("signature 5h429Vq failed to confirm"))
    assert is_rate_limit_error(RuntimeError("HTTP status 429 from rpc"))
    assert is_rate_limit_error(RuntimeError("Too Many Requests"))

    fake = FakeTime()
    caller = RateLimitedCaller(min_interval=0.0, sleep=fake.sleep, clock=fake.clock)
    attempts = []

    async def missing():
        attempts.append(1)
        raise RuntimeError(f"could not find account {address}")

    with pytest.raises(UpstreamUnavailable):
        asyncio.run(caller.call(missing))
    assert len(attempts) == 1
    assert fake.sleeps == []


def test_calls_are_spaced_by_min_interval() -> None:
    fake = FakeTime()
    caller = RateLimitedCaller(min_interval=0.5, sleep=fake.sleep, clock=fake.clock)

    async def noop():
        return None

    async def run():
        await caller.call(noop)
        await caller.call(noop)
        fake.now += 2.0
        await caller.call(noop)

    asyncio.run(run())
    assert fake.sleeps == [0.5]


def test_deadline_turns_slow_calls_into_unavailable() -> None:
    caller = RateLimitedCaller(min_interval=0.0, deadline=0.01)

    async def slow():
        await asyncio.sleep(1)

    with pytest.raises(UpstreamUnavailable):
        asyncio.run(caller.call(slow))


class BrokenEndpoint:
    def __init__(self) -> None:
        self.calls = 0

    async def get_balance(self, address):
        self.calls += 1
        raise ConnectionError("node down")


class HealthyEndpoint:
    async def get_balance(self, address):
        return SimpleNamespace(value=42)


def test_client_falls_back_to_next_endpoint() -> None:
    broken = BrokenEndpoint()
    client = SolanaClient(
        RPCConfig(fallback_urls=["https://backup.example"]),
        caller=RateLimitedCaller(min_interval=0.0),
        clients=[broken, HealthyEndpoint()],
    )
    assert asyncio.run(client.get_balance(Pubkey.new_unique())) == 42
    assert broken.calls == 1


def test_client_raises_last_error_when_every_endpoint_fails() -> None:
    client = SolanaClient(RPCConfig(), caller=RateLimitedCaller(min_interval=0.0), clients=[BrokenEndpoint()])
    with pytest.raises(UpstreamUnavailable):
        asyncio.run(client.get_balance(Pubkey.new_unique()))


def test_multiple_accounts_are_chunked(chain, components) -> None:
    owner = Pubkey.new_unique()
    mint = chain.add_mint()
    addresses = [chain.add_token_account(owner, mint) for _ in range(250)]

    accounts = asyncio.run(components.client.get_multiple_accounts(addresses))
    assert len(accounts) == 250
    assert all(account is not None for account in accounts)
    assert chain.calls.count("get_multiple_accounts") == 3
