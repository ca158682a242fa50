"""Facade wiring scanning, transaction building and the lock/vesting ledger."""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List, Optional, Sequence, Union

from solders.pubkey import Pubkey

from .analysis.classifier import AccountClassifier, ClassificationPolicy, HeuristicPolicy
from .analytics.fees import FeeEngine
from .config.settings import AppConfig, LedgerBackend, get_app_config
from .datalake.schemas import (
    AccountAction,
    BuiltTransaction,
    CreateLockRequest,
    CreateVestingRequest,
    FeeInfo,
    LedgerTransfer,
    ScanResult,
    TokenLock,
    VestingSchedule,
    WalletBalance,
    WalletLedgerView,
    WalletOutcome,
)
from .datalake.storage import InMemoryLedgerRepository, LedgerRepository, SQLiteLedgerRepository
from .execution.solana_client import SolanaClient
from .execution.transaction_builder import TransactionBuilder
from .execution.wallet import resolve_wallet_entry, validate_wallet_address
from .ingestion.metadata import AssetMetadataClient, MetadataCache
from .ingestion.onchain import TokenAccountReader
from .ledger.lock_vesting import LockVestingLedger
from .monitoring.logger import correlation_scope, get_logger
from .monitoring.metrics import METRICS
from .utils.constants import LAMPORTS_PER_SOL, utc_now
from .utils.errors import InvalidRequest, SweeperError


class SweepService:
    """Entry point used by the CLI (or any HTTP layer) for every core operation."""

    def __init__(
        self,
        client: SolanaClient,
        classifier: AccountClassifier,
        builder: TransactionBuilder,
        cache: MetadataCache,
        fees: FeeEngine,
        ledger: LockVestingLedger,
        *,
        metadata_client: Optional[AssetMetadataClient] = None,
        max_bulk_wallets: int = 50,
    ) -> None:
        self._client = client
        self._classifier = classifier
        self._builder = builder
        self._cache = cache
        self._fees = fees
        self._ledger = ledger
        self._metadata_client = metadata_client
        self._max_bulk_wallets = max_bulk_wallets
        self._logger = get_logger(__name__)

    @property
    def ledger(self) -> LockVestingLedger:
        return self._ledger

    async def scan_wallet(self, address: Union[str, Pubkey]) -> ScanResult:
        """Return the closeable and burnable accounts of a wallet with recoverable totals."""

        classified = await self._classifier.classify(address)
        actionable = [item for item in classified if item.is_actionable]
        metadata = await self._cache.get_metadata(item.account.mint for item in actionable)
        accounts = [replace(item, metadata=metadata.get(item.account.mint)) for item in actionable]
        totals = self._fees.total(item.gross_recoverable for item in accounts)
        METRICS.increment("scan.wallets")
        return ScanResult(
            wallet=str(validate_wallet_address(address)),
            accounts=accounts,
            total_gross=totals.gross,
            total_fee=totals.fee,
            total_net=totals.net,
            scanned_at=utc_now(),
        )

    async def build_transaction(
        self,
        address: Union[str, Pubkey],
        account_ids: Iterable[str],
        action: Union[AccountAction, str],
    ) -> BuiltTransaction:
        return await self._builder.build(address, account_ids, action)

    def _check_bulk_size(self, entries: Sequence[str]) -> None:
        if not entries:
            raise InvalidRequest("At least one wallet is required")
        if len(entries) > self._max_bulk_wallets:
            raise InvalidRequest(f"At most {self._max_bulk_wallets} wallets per bulk request")

    async def bulk_scan(self, entries: Sequence[str]) -> List[WalletOutcome]:
        """Scan each wallet independently; one wallet failing never stops the rest."""

        self._check_bulk_size(entries)
        outcomes: List[WalletOutcome] = []
        for index, entry in enumerate(entries):
            with correlation_scope(f"bulk-scan-{index}"):
                try:
                    wallet = str(resolve_wallet_entry(entry))
                except SweeperError as exc:
                    outcomes.append(WalletOutcome(wallet=f"entry-{index}", error=exc.to_dict()))
                    continue
                try:
                    outcomes.append(WalletOutcome(wallet=wallet, result=await self.scan_wallet(wallet)))
                except SweeperError as exc:
                    METRICS.increment("bulk.wallet_failures")
                    self._logger.warning("Bulk scan failed for %s: %s", wallet, exc.message)
                    outcomes.append(WalletOutcome(wallet=wallet, error=exc.to_dict()))
        return outcomes

    async def bulk_build(self, entries: Sequence[str], action: Union[AccountAction, str]) -> List[WalletOutcome]:
        """Scan each wallet and build one transaction for its accounts matching ``action``."""

        try:
            action = AccountAction(action)
        except ValueError as exc:
            raise InvalidRequest(f"Unknown action {action!r}") from exc
        self._check_bulk_size(entries)
        outcomes: List[WalletOutcome] = []
        for index, entry in enumerate(entries):
            with correlation_scope(f"bulk-build-{index}"):
                try:
                    wallet = str(resolve_wallet_entry(entry))
                except SweeperError as exc:
                    outcomes.append(WalletOutcome(wallet=f"entry-{index}", error=exc.to_dict()))
                    continue
                try:
                    scan = await self.scan_wallet(wallet)
                    ids = [item.address for item in scan.accounts if item.action is action]
                    built = await self._builder.build(wallet, ids, action)
                    outcomes.append(WalletOutcome(wallet=wallet, result=built))
                except SweeperError as exc:
                    METRICS.increment("bulk.wallet_failures")
                    self._logger.warning("Bulk build failed for %s: %s", wallet, exc.message)
                    outcomes.append(WalletOutcome(wallet=wallet, error=exc.to_dict()))
        return outcomes

    async def wallet_balance(self, address: Union[str, Pubkey]) -> WalletBalance:
        wallet = validate_wallet_address(address)
        lamports = await self._client.get_balance(wallet)
        return WalletBalance(address=str(wallet), lamports=lamports, sol=lamports / LAMPORTS_PER_SOL)

    def fee_info(self) -> FeeInfo:
        return self._fees.info()

    async def create_lock(self, owner: str, request: CreateLockRequest) -> LedgerTransfer:
        return await self._ledger.create_lock(owner, request)

    async def create_vesting(self, owner: str, request: CreateVestingRequest) -> LedgerTransfer:
        return await self._ledger.create_vesting(owner, request)

    async def claim_lock(self, lock_id: str, beneficiary: str) -> LedgerTransfer:
        return await self._ledger.claim_from_lock(lock_id, beneficiary)

    async def claim_vesting(self, vesting_id: str, beneficiary: str) -> LedgerTransfer:
        return await self._ledger.claim_from_vesting(vesting_id, beneficiary)

    async def revoke(self, record_id: str, owner: str) -> LedgerTransfer:
        return await self._ledger.revoke(record_id, owner)

    def list_for_wallet(self, address: str) -> WalletLedgerView:
        return self._ledger.list_for_wallet(address)

    def get_lock(self, lock_id: str) -> TokenLock:
        return self._ledger.get_lock(lock_id)

    def get_vesting(self, vesting_id: str) -> VestingSchedule:
        return self._ledger.get_vesting(vesting_id)

    def claimable(self, vesting_id: str) -> int:
        return self._ledger.claimable(vesting_id)

    async def close(self) -> None:
        await self._client.close()
        if self._metadata_client is not None:
            await self._metadata_client.close()


def _ledger_repository(config: AppConfig) -> LedgerRepository:
    if config.ledger.backend is LedgerBackend.SQLITE:
        return SQLiteLedgerRepository(config.ledger.database_path)
    return InMemoryLedgerRepository()


def build_services(
    config: Optional[AppConfig] = None,
    *,
    client: Optional[SolanaClient] = None,
    metadata_client: Optional[AssetMetadataClient] = None,
    repository: Optional[LedgerRepository] = None,
    policy: Optional[ClassificationPolicy] = None,
) -> SweepService:
    """Wire the default component graph from configuration."""

    cfg = config or get_app_config()
    rpc = client or SolanaClient.from_app_config(cfg)
    if metadata_client is None and cfg.metadata.das_url:
        metadata_client = AssetMetadataClient(cfg.metadata)
    reader = TokenAccountReader(rpc, cfg.metadata)
    cache = MetadataCache(reader, metadata_client, cfg.metadata)
    chosen_policy = policy or HeuristicPolicy()
    fees = FeeEngine(cfg.fees)
    return SweepService(
        client=rpc,
        classifier=AccountClassifier(reader, cache, chosen_policy),
        builder=TransactionBuilder(rpc, reader, cache, fees, chosen_policy),
        cache=cache,
        fees=fees,
        ledger=LockVestingLedger(reader, repository or _ledger_repository(cfg)),
        metadata_client=metadata_client,
        max_bulk_wallets=cfg.bulk.max_wallets,
    )


__all__ = ["SweepService", "build_services"]
