"""Builds one unsigned transaction that burns/closes many token accounts."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Union

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.system_program import TransferParams as SystemTransferParams
from solders.system_program import transfer as system_transfer
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import burn, burn_checked, close_account
from spl.token.models import BurnCheckedParams, BurnParams, CloseAccountParams

from ..analysis.classifier import ClassificationPolicy, HeuristicPolicy, burn_rejection, close_rejection
from ..analytics.fees import FeeEngine
from ..datalake.schemas import AccountAction, BuiltTransaction, SkippedAccount, TokenAccountFact
from ..ingestion.metadata import MetadataCache
from ..ingestion.onchain import TokenAccountReader
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.errors import EmptyBatch, InvalidAddress, InvalidRequest, MissingBlockhash, MissingFeePayer
from .solana_client import SolanaClient
from .wallet import parse_pubkey, validate_wallet_address


def burn_instruction(account: TokenAccountFact, owner: Pubkey, decimals: int) -> Instruction:
    """Burn the full balance; NFTs (zero decimals) use the unchecked variant."""

    address = Pubkey.from_string(account.address)
    mint = Pubkey.from_string(account.mint)
    if decimals == 0:
        return burn(
            BurnParams(
                program_id=TOKEN_PROGRAM_ID,
                account=address,
                mint=mint,
                owner=owner,
                amount=account.amount,
            )
        )
    return burn_checked(
        BurnCheckedParams(
            program_id=TOKEN_PROGRAM_ID,
            account=address,
            mint=mint,
            owner=owner,
            amount=account.amount,
            decimals=decimals,
        )
    )


def close_instruction(account: TokenAccountFact, owner: Pubkey) -> Instruction:
    return close_account(
        CloseAccountParams(
            program_id=TOKEN_PROGRAM_ID,
            account=Pubkey.from_string(account.address),
            dest=owner,
            owner=owner,
        )
    )


class TransactionBuilder:
    """Re-validates selected accounts and assembles a single batch transaction."""

    def __init__(
        self,
        client: SolanaClient,
        reader: TokenAccountReader,
        cache: MetadataCache,
        fees: FeeEngine,
        policy: Optional[ClassificationPolicy] = None,
    ) -> None:
        self._client = client
        self._reader = reader
        self._cache = cache
        self._fees = fees
        self._policy = policy or HeuristicPolicy()
        self._logger = get_logger(__name__)

    def _skip(self, skipped: List[SkippedAccount], address: str, reason: str) -> None:
        skipped.append(SkippedAccount(address=address, reason=reason))
        METRICS.increment("builder.skipped")
        self._logger.warning("Skipping account %s: %s", address, reason, extra={"account": address})

    async def _burn_decimals(self, accounts: Iterable[TokenAccountFact]) -> Dict[str, int]:
        mints = list(dict.fromkeys(account.mint for account in accounts))
        facts = await self._cache.get_mint_facts(mints)
        metadata = await self._cache.get_metadata(mints)
        decimals: Dict[str, int] = {}
        for mint in mints:
            hint = metadata.get(mint)
            if hint is not None and hint.decimals is not None:
                decimals[mint] = hint.decimals
            elif mint in facts:
                decimals[mint] = facts[mint].decimals
        return decimals

    async def build(
        self,
        wallet_address: Union[str, Pubkey],
        account_ids: Iterable[str],
        action: Union[AccountAction, str],
    ) -> BuiltTransaction:
        wallet = validate_wallet_address(wallet_address)
        owner = str(wallet)
        try:
            action = AccountAction(action)
        except ValueError as exc:
            raise InvalidRequest(f"Unknown action {action!r}") from exc
        if action is AccountAction.IGNORE:
            raise InvalidRequest("Action must be 'close' or 'burn'")

        skipped: List[SkippedAccount] = []
        addresses: List[Pubkey] = []
        for account_id in dict.fromkeys(account_ids):
            try:
                addresses.append(parse_pubkey(account_id))
            except InvalidAddress:
                self._skip(skipped, str(account_id), "invalid address")

        current = await self._reader.get_token_accounts(addresses) if addresses else {}
        mint_facts = {}
        if action is AccountAction.CLOSE:
            mint_facts = await self._cache.get_mint_facts(
                account.mint for account in current.values() if account is not None
            )
        qualified: List[TokenAccountFact] = []
        for address in addresses:
            account = current.get(str(address))
            if account is None:
                self._skip(skipped, str(address), "account not found")
                continue
            if action is AccountAction.CLOSE:
                reason = close_rejection(account, owner, mint_facts.get(account.mint), self._policy)
            else:
                reason = burn_rejection(account, owner, self._policy)
            if reason is not None:
                self._skip(skipped, str(address), reason)
                continue
            qualified.append(account)

        decimals: Dict[str, int] = {}
        if action is AccountAction.BURN and qualified:
            decimals = await self._burn_decimals(qualified)

        instructions: List[Instruction] = []
        included: List[str] = []
        grosses: List[int] = []
        rent = await self._reader.rent_exempt_minimum() if qualified else 0
        for account in qualified:
            if action is AccountAction.BURN:
                mint_decimals = decimals.get(account.mint)
                if mint_decimals is None:
                    self._skip(skipped, account.address, "mint decimals unavailable")
                    continue
                instructions.append(burn_instruction(account, wallet, mint_decimals))
            instructions.append(close_instruction(account, wallet))
            included.append(account.address)
            grosses.append(rent)

        if not included:
            raise EmptyBatch("No selected account qualifies for this action")

        breakdown = self._fees.total(grosses)
        if breakdown.fee > 0:
            instructions.append(
                system_transfer(
                    SystemTransferParams(
                        from_pubkey=wallet,
                        to_pubkey=Pubkey.from_string(self._fees.fee_wallet),
                        lamports=breakdown.fee,
                    )
                )
            )

        blockhash = await self._client.get_latest_blockhash()
        built = BuiltTransaction(
            action=action,
            fee_payer=wallet,
            blockhash=blockhash,
            instructions=instructions,
            included=included,
            skipped=skipped,
            fee=breakdown,
        )
        self._validate(built)
        METRICS.increment("builder.transactions")
        METRICS.observe("builder.accounts_per_tx", len(included))
        self._logger.info(
            "Built %s transaction for %d accounts",
            action.value,
            len(included),
            extra={"wallet": owner, "skipped": len(skipped), "fee": breakdown.fee},
        )
        return built

    @staticmethod
    def _validate(built: BuiltTransaction) -> None:
        if not built.instructions:
            raise EmptyBatch("Transaction has no instructions")
        if built.fee_payer is None:
            raise MissingFeePayer("Transaction has no fee payer")
        if built.blockhash is None:
            raise MissingBlockhash("Transaction has no recent blockhash")


__all__ = ["TransactionBuilder", "burn_instruction", "close_instruction"]
