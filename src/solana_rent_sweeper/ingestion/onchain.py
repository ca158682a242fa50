"""Token account and mint decoding plus the cached rent lookup."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from cachetools import TTLCache
from solders.pubkey import Pubkey
from spl.token._layouts import ACCOUNT_LAYOUT, MINT_LAYOUT
from spl.token.constants import TOKEN_PROGRAM_ID

from ..config.settings import MetadataConfig, get_app_config
from ..datalake.schemas import MintFact, TokenAccountFact
from ..execution.solana_client import SolanaClient
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import TOKEN_ACCOUNT_SIZE

# AccountState values from the token program.
_STATE_INITIALIZED = 1
_STATE_FROZEN = 2


def decode_token_account(address: str, data: bytes) -> Optional[TokenAccountFact]:
    """Decode raw token account bytes; returns ``None`` when the data is too short."""

    if len(data) < ACCOUNT_LAYOUT.sizeof():
        return None
    parsed = ACCOUNT_LAYOUT.parse(data[: ACCOUNT_LAYOUT.sizeof()])
    return TokenAccountFact(
        address=address,
        owner=str(Pubkey(parsed.owner)),
        mint=str(Pubkey(parsed.mint)),
        amount=int(parsed.amount),
        is_initialized=parsed.state in (_STATE_INITIALIZED, _STATE_FROZEN),
        is_frozen=parsed.state == _STATE_FROZEN,
        is_native=bool(parsed.is_native_option),
        close_authority=str(Pubkey(parsed.close_authority)) if parsed.close_authority_option else None,
    )


def decode_mint(address: str, data: bytes) -> Optional[MintFact]:
    if len(data) < MINT_LAYOUT.sizeof():
        return None
    parsed = MINT_LAYOUT.parse(data[: MINT_LAYOUT.sizeof()])
    return MintFact(
        address=address,
        decimals=int(parsed.decimals),
        supply=int(parsed.supply),
        is_initialized=bool(parsed.is_initialized),
        mint_authority=str(Pubkey(parsed.mint_authority)) if parsed.mint_authority_option else None,
        freeze_authority=str(Pubkey(parsed.freeze_authority)) if parsed.freeze_authority_option else None,
    )


def _account_data(account: Any) -> Optional[bytes]:
    if account is None:
        return None
    if getattr(account, "owner", TOKEN_PROGRAM_ID) != TOKEN_PROGRAM_ID:
        return None
    return bytes(account.data)


class TokenAccountReader:
    """Reads the token accounts of a wallet straight from the RPC node."""

    def __init__(self, client: SolanaClient, config: Optional[MetadataConfig] = None) -> None:
        self._client = client
        cfg = config or get_app_config().metadata
        self._rent_cache: TTLCache[int, int] = TTLCache(maxsize=8, ttl=cfg.rent_cache_ttl_seconds)
        self._logger = get_logger(__name__)

    async def list_token_accounts(self, owner: Pubkey) -> List[TokenAccountFact]:
        raw_accounts = await self._client.get_token_accounts_by_owner(owner)
        facts: List[TokenAccountFact] = []
        for address, data in raw_accounts:
            fact = decode_token_account(str(address), data)
            if fact is None:
                self._logger.warning("Skipping undecodable token account %s", address)
                continue
            facts.append(fact)
        METRICS.observe("scan.token_accounts", len(facts))
        return facts

    async def get_token_account(self, address: Pubkey) -> Optional[TokenAccountFact]:
        data = _account_data(await self._client.get_account(address))
        if data is None:
            return None
        return decode_token_account(str(address), data)

    async def get_token_accounts(self, addresses: Sequence[Pubkey]) -> Dict[str, Optional[TokenAccountFact]]:
        """Fetch current state for ``addresses``; missing or foreign accounts map to ``None``."""

        accounts = await self._client.get_multiple_accounts(addresses)
        result: Dict[str, Optional[TokenAccountFact]] = {}
        for address, account in zip(addresses, accounts):
            data = _account_data(account)
            result[str(address)] = decode_token_account(str(address), data) if data is not None else None
        return result

    async def get_mints(self, addresses: Sequence[Pubkey]) -> Dict[str, MintFact]:
        accounts = await self._client.get_multiple_accounts(addresses)
        result: Dict[str, MintFact] = {}
        for address, account in zip(addresses, accounts):
            data = _account_data(account)
            if data is None:
                continue
            mint = decode_mint(str(address), data)
            if mint is not None:
                result[str(address)] = mint
        return result

    async def rent_exempt_minimum(self, size: int = TOKEN_ACCOUNT_SIZE) -> int:
        cached = self._rent_cache.get(size)
        if cached is not None:
            return cached
        lamports = await self._client.get_minimum_balance_for_rent_exemption(size)
        self._rent_cache[size] = lamports
        return lamports


__all__ = ["TokenAccountReader", "decode_mint", "decode_token_account"]
