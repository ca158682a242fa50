"""Labels a wallet's token accounts as closeable, burnable or ignored."""

from __future__ import annotations

from dataclasses import replace
from typing import Collection, List, Optional, Protocol, Tuple, Union

from solders.pubkey import Pubkey

from ..datalake.schemas import (
    AccountAction,
    AccountCategory,
    ClassifiedAccount,
    MintFact,
    TokenAccountFact,
)
from ..execution.wallet import validate_wallet_address
from ..ingestion.metadata import MetadataCache
from ..ingestion.onchain import TokenAccountReader
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import NON_BURNABLE_MINTS


class ClassificationPolicy(Protocol):
    """Detection hooks for mints that need special handling."""

    def is_compressed_collectible(self, mint: MintFact) -> bool:
        ...

    def is_non_burnable(self, mint_address: str) -> bool:
        ...


class HeuristicPolicy:
    """Supply-of-one NFT detection plus a fixed deny-list of fungible mints."""

    def __init__(self, non_burnable: Optional[Collection[str]] = None) -> None:
        self._non_burnable = frozenset(non_burnable if non_burnable is not None else NON_BURNABLE_MINTS)

    def is_compressed_collectible(self, mint: MintFact) -> bool:
        return mint.supply == 1 and mint.decimals == 0

    def is_non_burnable(self, mint_address: str) -> bool:
        return mint_address in self._non_burnable


def close_rejection(
    account: TokenAccountFact,
    wallet: str,
    mint: Optional[MintFact],
    policy: ClassificationPolicy,
) -> Optional[str]:
    """Return why ``account`` cannot be closed, or ``None`` when it can."""

    if account.owner != wallet:
        return "not owned by wallet"
    if not account.is_initialized:
        return "uninitialized"
    if account.is_frozen:
        return "frozen"
    if not account.is_empty:
        return "non-zero balance"
    if mint is not None and policy.is_compressed_collectible(mint):
        return "compressed collectible"
    return None


def burn_rejection(
    account: TokenAccountFact,
    wallet: str,
    policy: ClassificationPolicy,
) -> Optional[str]:
    """Return why ``account`` cannot be burned and closed, or ``None`` when it can."""

    if account.owner != wallet:
        return "not owned by wallet"
    if not account.is_initialized:
        return "uninitialized"
    if account.is_frozen:
        return "frozen"
    if account.is_empty:
        return "empty balance"
    if policy.is_non_burnable(account.mint):
        return "non-burnable mint"
    return None


def label_account(
    account: TokenAccountFact,
    wallet: str,
    mint: Optional[MintFact],
    policy: ClassificationPolicy,
) -> Tuple[AccountAction, AccountCategory, Optional[str]]:
    close_reason = close_rejection(account, wallet, mint, policy)
    if close_reason is None:
        return AccountAction.CLOSE, AccountCategory.CLOSEABLE, None
    burn_reason = burn_rejection(account, wallet, policy)
    if burn_reason is None:
        decimals = mint.decimals if mint is not None else account.decimals
        if decimals == 0:
            return AccountAction.BURN, AccountCategory.BURNABLE_NFT, None
        return AccountAction.BURN, AccountCategory.BURNABLE_TOKEN, None
    if burn_reason == "non-burnable mint":
        return AccountAction.IGNORE, AccountCategory.NON_BURNABLE, burn_reason
    reason = close_reason if account.is_empty else burn_reason
    return AccountAction.IGNORE, AccountCategory.IGNORED, reason


class AccountClassifier:
    """Inspects every token account of a wallet and computes its recoverable rent."""

    def __init__(
        self,
        reader: TokenAccountReader,
        cache: MetadataCache,
        policy: Optional[ClassificationPolicy] = None,
    ) -> None:
        self._reader = reader
        self._cache = cache
        self._policy = policy or HeuristicPolicy()
        self._logger = get_logger(__name__)

    @property
    def policy(self) -> ClassificationPolicy:
        return self._policy

    async def classify(self, wallet_address: Union[str, Pubkey]) -> List[ClassifiedAccount]:
        """Label every token account of ``wallet_address`` in enumeration order."""

        wallet = validate_wallet_address(wallet_address)
        owner = str(wallet)
        accounts = await self._reader.list_token_accounts(wallet)
        if not accounts:
            return []
        mints = await self._cache.get_mint_facts(account.mint for account in accounts)
        rent = await self._reader.rent_exempt_minimum()

        classified: List[ClassifiedAccount] = []
        for account in accounts:
            mint = mints.get(account.mint)
            if mint is not None:
                account = replace(account, decimals=mint.decimals)
            action, category, reason = label_account(account, owner, mint, self._policy)
            gross = rent if action is not AccountAction.IGNORE else 0
            classified.append(
                ClassifiedAccount(
                    account=account,
                    action=action,
                    category=category,
                    gross_recoverable=gross,
                    reason=reason,
                )
            )
            METRICS.increment(f"classifier.{category.value}")
        self._logger.info(
            "Classified %d token accounts",
            len(classified),
            extra={"wallet": owner, "actionable": sum(1 for item in classified if item.is_actionable)},
        )
        return classified


__all__ = [
    "AccountClassifier",
    "ClassificationPolicy",
    "HeuristicPolicy",
    "burn_rejection",
    "close_rejection",
    "label_account",
]
