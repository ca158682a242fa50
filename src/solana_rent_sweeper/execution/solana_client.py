"""Async Solana RPC wrapper with call spacing, backoff and endpoint fallback."""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

import httpx
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.models import TokenAccountOpts
from solders.hash import Hash
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_PROGRAM_ID
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config.settings import AppConfig, RetryConfig, RPCConfig, get_app_config
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import MAX_MULTIPLE_ACCOUNTS
from ..utils.errors import SweeperError, UpstreamRateLimited, UpstreamUnavailable

Sleeper = Callable[[float], Awaitable[None]]

# Status code as a standalone token only; base58 keys and signatures may contain "429".
_RATE_LIMIT_PATTERN = re.compile(r"\b429\b|too many requests", re.IGNORECASE)


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Exponential backoff for throttled calls: ``min(base * 2**n, cap)``."""

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 10.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
        )

    def delay_for(self, retry_index: int) -> float:
        return min(self.base_delay * (2**retry_index), self.max_delay)


def is_rate_limit_error(exc: BaseException) -> bool:
    """Return True when ``exc`` or anything it chains from looks like HTTP 429."""

    seen: set[int] = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, httpx.HTTPStatusError) and current.response.status_code == 429:
            return True
        if _RATE_LIMIT_PATTERN.search(str(current)):
            return True
        current = current.__cause__ or current.__context__
    return False


class RateLimitedCaller:
    """Serializes outbound calls with a minimum spacing and retries throttled ones.

    One instance is shared by every RPC client in the process so the spacing
    applies globally regardless of how many requests are in flight.
    """

    def __init__(
        self,
        *,
        min_interval: float = 0.5,
        policy: Optional[RetryPolicy] = None,
        deadline: Optional[float] = None,
        sleep: Sleeper = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._min_interval = max(0.0, min_interval)
        self._policy = policy or RetryPolicy()
        self._deadline = deadline
        self._sleep = sleep
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_call: Optional[float] = None
        self._logger = get_logger(__name__)

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def _wait_turn(self) -> None:
        async with self._lock:
            if self._last_call is not None:
                remaining = self._min_interval - (self._clock() - self._last_call)
                if remaining > 0:
                    await self._sleep(remaining)
            self._last_call = self._clock()

    async def _attempt(self, name: str, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        await self._wait_turn()
        METRICS.increment("rpc.calls")
        try:
            if self._deadline is None:
                return await fn(*args, **kwargs)
            return await asyncio.wait_for(fn(*args, **kwargs), timeout=self._deadline)
        except SweeperError:
            raise
        except asyncio.TimeoutError as exc:
            METRICS.increment("rpc.timeouts")
            raise UpstreamUnavailable(f"{name} exceeded {self._deadline}s deadline") from exc
        except Exception as exc:  # noqa: BLE001
            if is_rate_limit_error(exc):
                METRICS.increment("rpc.rate_limited")
                raise UpstreamRateLimited(f"{name} was rate limited") from exc
            METRICS.increment("rpc.failures")
            raise UpstreamUnavailable(f"{name} failed: {exc}") from exc

    def _log_retry(self, retry_state: RetryCallState) -> None:
        METRICS.increment("rpc.retries")
        self._logger.warning(
            "Rate limited, retrying in %.2fs (attempt %d/%d)",
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
            retry_state.attempt_number,
            self._policy.max_attempts,
        )

    async def call(self, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        name = getattr(fn, "__name__", repr(fn))
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._policy.max_attempts),
            wait=wait_exponential(multiplier=self._policy.base_delay, max=self._policy.max_delay),
            retry=retry_if_exception_type(UpstreamRateLimited),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        result: Any = None
        async for attempt in retrying:
            with attempt:
                result = await self._attempt(name, fn, *args, **kwargs)
        return result


class SolanaClient:
    """Token-program oriented RPC facade over one or more ``AsyncClient`` endpoints."""

    def __init__(
        self,
        config: Optional[RPCConfig] = None,
        caller: Optional[RateLimitedCaller] = None,
        clients: Optional[Sequence[Any]] = None,
    ) -> None:
        self._config = config or get_app_config().rpc
        self._endpoints = [str(self._config.primary_url), *map(str, self._config.fallback_urls)]
        if clients is None:
            clients = [
                AsyncClient(
                    endpoint,
                    commitment=Commitment(self._config.commitment),
                    timeout=self._config.request_timeout,
                )
                for endpoint in self._endpoints
            ]
        self._clients = list(clients)
        self._caller = caller or RateLimitedCaller(
            min_interval=self._config.min_call_interval_seconds,
            deadline=self._config.call_deadline_seconds,
        )
        self._logger = get_logger(__name__)

    @classmethod
    def from_app_config(cls, config: AppConfig) -> "SolanaClient":
        caller = RateLimitedCaller(
            min_interval=config.rpc.min_call_interval_seconds,
            policy=RetryPolicy.from_config(config.retry),
            deadline=config.rpc.call_deadline_seconds,
        )
        return cls(config.rpc, caller=caller)

    async def _execute(self, method_name: str, *args: Any, **kwargs: Any) -> Any:
        last_exc: Optional[SweeperError] = None
        for index, client in enumerate(self._clients):
            endpoint = self._endpoints[index] if index < len(self._endpoints) else f"client-{index}"
            method = getattr(client, method_name)
            try:
                return await self._caller.call(method, *args, **kwargs)
            except (UpstreamUnavailable, UpstreamRateLimited) as exc:
                last_exc = exc
                METRICS.increment("rpc.endpoint_failures")
                self._logger.warning("RPC %s failed on %s: %s", method_name, endpoint, exc.message)
        if last_exc is not None:
            raise last_exc
        raise UpstreamUnavailable(f"RPC {method_name} has no configured endpoints")

    async def get_token_accounts_by_owner(self, owner: Pubkey) -> List[Tuple[Pubkey, bytes]]:
        """Return ``(address, raw data)`` for every SPL token account owned by ``owner``."""

        response = await self._execute(
            "get_token_accounts_by_owner",
            owner,
            TokenAccountOpts(program_id=TOKEN_PROGRAM_ID),
        )
        return [(item.pubkey, bytes(item.account.data)) for item in response.value]

    async def get_account(self, address: Pubkey) -> Optional[Any]:
        response = await self._execute("get_account_info", address)
        return response.value

    async def get_multiple_accounts(self, addresses: Sequence[Pubkey]) -> List[Optional[Any]]:
        accounts: List[Optional[Any]] = []
        for start in range(0, len(addresses), MAX_MULTIPLE_ACCOUNTS):
            chunk = list(addresses[start : start + MAX_MULTIPLE_ACCOUNTS])
            response = await self._execute("get_multiple_accounts", chunk)
            accounts.extend(response.value)
        return accounts

    async def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        response = await self._execute("get_minimum_balance_for_rent_exemption", size)
        return int(response.value)

    async def get_latest_blockhash(self) -> Optional[Hash]:
        response = await self._execute("get_latest_blockhash")
        value = response.value
        return value.blockhash if value is not None else None

    async def get_balance(self, address: Pubkey) -> int:
        response = await self._execute("get_balance", address)
        return int(response.value)

    async def close(self) -> None:
        for client in self._clients:
            closer = getattr(client, "close", None)
            if closer is not None:
                await closer()


__all__ = ["RateLimitedCaller", "RetryPolicy", "SolanaClient", "is_rate_limit_error"]
