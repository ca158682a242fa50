from __future__ import annotations

from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest
from solders.hash import Hash
from solders.pubkey import Pubkey
from spl.token._layouts import ACCOUNT_LAYOUT, MINT_LAYOUT
from spl.token.constants import TOKEN_PROGRAM_ID

from solana_rent_sweeper.analysis.classifier import AccountClassifier
from solana_rent_sweeper.analytics.fees import FeeEngine
from solana_rent_sweeper.config.settings import FeeConfig, MetadataConfig, RPCConfig
from solana_rent_sweeper.datalake.schemas import TokenMetadata
from solana_rent_sweeper.execution.solana_client import RateLimitedCaller, SolanaClient
from solana_rent_sweeper.execution.transaction_builder import TransactionBuilder
from solana_rent_sweeper.ingestion.metadata import MetadataCache
from solana_rent_sweeper.ingestion.onchain import TokenAccountReader

RENT_EXEMPT_MINIMUM = 2_039_280
ZERO_KEY = bytes(32)


class FakeChain:
    """Minimal stand-in for ``AsyncClient`` backed by in-memory accounts."""

    def __init__(self, rent: int = RENT_EXEMPT_MINIMUM) -> None:
        self.rent = rent
        self.accounts: Dict[Pubkey, SimpleNamespace] = {}
        self.owned: Dict[Pubkey, List[Pubkey]] = {}
        self.balances: Dict[Pubkey, int] = {}
        self.blockhash = Hash.new_unique()
        self.calls: List[str] = []

    def add_mint(
        self, *, decimals: int = 6, supply: int = 1_000_000_000, address: Optional[Pubkey] = None
    ) -> Pubkey:
        address = address or Pubkey.new_unique()
        data = MINT_LAYOUT.build(
            dict(
                mint_authority_option=0,
                mint_authority=ZERO_KEY,
                supply=supply,
                decimals=decimals,
                is_initialized=1,
                freeze_authority_option=0,
                freeze_authority=ZERO_KEY,
            )
        )
        self.accounts[address] = SimpleNamespace(owner=TOKEN_PROGRAM_ID, data=data, lamports=1_461_600)
        return address

    def token_account_data(self, owner: Pubkey, mint: Pubkey, amount: int = 0, state: int = 1) -> bytes:
        return ACCOUNT_LAYOUT.build(
            dict(
                mint=bytes(mint),
                owner=bytes(owner),
                amount=amount,
                delegate_option=0,
                delegate=ZERO_KEY,
                state=state,
                is_native_option=0,
                is_native=0,
                delegated_amount=0,
                close_authority_option=0,
                close_authority=ZERO_KEY,
            )
        )

    def add_token_account(
        self,
        owner: Pubkey,
        mint: Pubkey,
        amount: int = 0,
        *,
        state: int = 1,
        address: Optional[Pubkey] = None,
    ) -> Pubkey:
        address = address or Pubkey.new_unique()
        self.accounts[address] = SimpleNamespace(
            owner=TOKEN_PROGRAM_ID,
            data=self.token_account_data(owner, mint, amount, state),
            lamports=self.rent,
        )
        self.owned.setdefault(owner, []).append(address)
        return address

    def set_amount(self, address: Pubkey, owner: Pubkey, mint: Pubkey, amount: int) -> None:
        self.accounts[address].data = self.token_account_data(owner, mint, amount)

    async def get_token_accounts_by_owner(self, owner, opts):
        self.calls.append("get_token_accounts_by_owner")
        return SimpleNamespace(
            value=[
                SimpleNamespace(pubkey=address, account=self.accounts[address])
                for address in self.owned.get(owner, [])
                if address in self.accounts
            ]
        )

    async def get_account_info(self, address):
        self.calls.append("get_account_info")
        return SimpleNamespace(value=self.accounts.get(address))

    async def get_multiple_accounts(self, addresses):
        self.calls.append("get_multiple_accounts")
        return SimpleNamespace(value=[self.accounts.get(address) for address in addresses])

    async def get_minimum_balance_for_rent_exemption(self, size):
        self.calls.append("get_minimum_balance_for_rent_exemption")
        return SimpleNamespace(value=self.rent)

    async def get_latest_blockhash(self):
        self.calls.append("get_latest_blockhash")
        return SimpleNamespace(value=SimpleNamespace(blockhash=self.blockhash, last_valid_block_height=100))

    async def get_balance(self, address):
        self.calls.append("get_balance")
        return SimpleNamespace(value=self.balances.get(address, 0))

    async def close(self) -> None:
        return None


class StaticMetadataClient:
    """Metadata client returning canned DAS entries."""

    def __init__(self, entries: Optional[Dict[str, TokenMetadata]] = None) -> None:
        self.entries = entries or {}
        self.requested: List[List[str]] = []

    async def fetch_many(self, mints):
        wanted = list(mints)
        self.requested.append(wanted)
        return {mint: self.entries[mint] for mint in wanted if mint in self.entries}

    async def close(self) -> None:
        return None


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def components(chain: FakeChain) -> SimpleNamespace:
    metadata_config = MetadataConfig()
    client = SolanaClient(RPCConfig(), caller=RateLimitedCaller(min_interval=0.0), clients=[chain])
    reader = TokenAccountReader(client, metadata_config)
    metadata_client = StaticMetadataClient()
    cache = MetadataCache(reader, metadata_client, metadata_config)
    fees = FeeEngine(FeeConfig())
    return SimpleNamespace(
        client=client,
        reader=reader,
        metadata_client=metadata_client,
        cache=cache,
        fees=fees,
        classifier=AccountClassifier(reader, cache),
        builder=TransactionBuilder(client, reader, cache, fees),
    )
