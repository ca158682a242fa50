"""Data models shared by the scanner, transaction builder and ledger."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction


class AccountAction(str, Enum):
    CLOSE = "close"
    BURN = "burn"
    IGNORE = "ignore"


class AccountCategory(str, Enum):
    """Finer grained label shown next to the action."""

    CLOSEABLE = "closeable"
    BURNABLE_TOKEN = "burnable_token"
    BURNABLE_NFT = "burnable_nft"
    NON_BURNABLE = "non_burnable"
    IGNORED = "ignored"


class VestingType(str, Enum):
    LINEAR = "linear"
    CLIFF = "cliff"
    STEP = "step"


@dataclass(slots=True, frozen=True)
class TokenAccountFact:
    """Snapshot of one SPL token account as decoded from chain data.

    ``amount`` is the raw integer balance; ``decimals`` is filled in from the
    mint once its facts are known.
    """

    address: str
    owner: str
    mint: str
    amount: int
    is_initialized: bool
    is_frozen: bool
    is_native: bool = False
    close_authority: Optional[str] = None
    decimals: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return self.amount == 0


@dataclass(slots=True, frozen=True)
class MintFact:
    """Decimals, supply and authorities of a mint account."""

    address: str
    decimals: int
    supply: int
    is_initialized: bool
    mint_authority: Optional[str] = None
    freeze_authority: Optional[str] = None


@dataclass(slots=True)
class TokenMetadata:
    """Best-effort descriptive metadata from the DAS index."""

    mint: str
    name: Optional[str] = None
    symbol: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    decimals: Optional[int] = None


@dataclass(slots=True)
class ClassifiedAccount:
    account: TokenAccountFact
    action: AccountAction
    category: AccountCategory
    gross_recoverable: int
    metadata: Optional[TokenMetadata] = None
    reason: Optional[str] = None

    @property
    def address(self) -> str:
        return self.account.address

    @property
    def is_actionable(self) -> bool:
        return self.action is not AccountAction.IGNORE


@dataclass(slots=True, frozen=True)
class FeeBreakdown:
    gross: int
    fee: int
    net: int


@dataclass(slots=True)
class ScanResult:
    """Actionable accounts of one wallet with recoverable totals."""

    wallet: str
    accounts: List[ClassifiedAccount]
    total_gross: int
    total_fee: int
    total_net: int
    scanned_at: datetime

    @property
    def account_count(self) -> int:
        return len(self.accounts)


@dataclass(slots=True, frozen=True)
class SkippedAccount:
    address: str
    reason: str


@dataclass(slots=True)
class BuiltTransaction:
    """Unsigned batch of burn/close instructions plus the aggregated fee transfer."""

    action: AccountAction
    fee_payer: Optional[Pubkey]
    blockhash: Optional[Hash]
    instructions: List[Instruction]
    included: List[str]
    skipped: List[SkippedAccount]
    fee: FeeBreakdown

    def to_message(self) -> Message:
        return Message.new_with_blockhash(self.instructions, self.fee_payer, self.blockhash)

    def serialize(self) -> str:
        """Return the unsigned legacy transaction as base64 for a wallet to sign."""

        transaction = Transaction.new_unsigned(self.to_message())
        return base64.b64encode(bytes(transaction)).decode("ascii")


@dataclass(slots=True)
class TokenLock:
    id: str
    token_mint: str
    token_account: str
    owner: str
    beneficiary: str
    total_amount: int
    locked_amount: int
    unlock_time: datetime
    is_revocable: bool
    created_at: datetime
    updated_at: datetime
    is_revoked: bool = False


@dataclass(slots=True)
class VestingSchedule:
    id: str
    token_mint: str
    token_account: str
    owner: str
    beneficiary: str
    total_amount: int
    vested_amount: int
    start_time: datetime
    end_time: datetime
    vesting_type: VestingType
    is_revocable: bool
    created_at: datetime
    updated_at: datetime
    cliff_time: Optional[datetime] = None
    is_revoked: bool = False


@dataclass(slots=True)
class CreateLockRequest:
    token_mint: str
    token_account: str
    beneficiary: str
    amount: int
    unlock_time: datetime
    is_revocable: bool = False


@dataclass(slots=True)
class CreateVestingRequest:
    token_mint: str
    token_account: str
    beneficiary: str
    amount: int
    start_time: datetime
    end_time: datetime
    vesting_type: VestingType = VestingType.LINEAR
    cliff_time: Optional[datetime] = None
    is_revocable: bool = False


@dataclass(slots=True)
class LedgerTransfer:
    """Instruction an owner or beneficiary signs to settle a ledger operation."""

    record_id: str
    instruction: Instruction
    amount: int


@dataclass(slots=True)
class WalletLedgerView:
    locks: List[TokenLock] = field(default_factory=list)
    vestings: List[VestingSchedule] = field(default_factory=list)


@dataclass(slots=True)
class WalletBalance:
    address: str
    lamports: int
    sol: float


@dataclass(slots=True)
class FeeInfo:
    fee_rate: float
    fee_wallet: str
    fee_percentage: float


@dataclass(slots=True)
class WalletOutcome:
    """Result of one wallet inside a bulk call; exactly one of result/error is set."""

    wallet: str
    result: Optional[Any] = None
    error: Optional[Dict[str, str]] = None

    @property
    def ok(self) -> bool:
        return self.error is None


__all__ = [
    "AccountAction",
    "AccountCategory",
    "BuiltTransaction",
    "ClassifiedAccount",
    "CreateLockRequest",
    "CreateVestingRequest",
    "FeeBreakdown",
    "FeeInfo",
    "LedgerTransfer",
    "MintFact",
    "ScanResult",
    "SkippedAccount",
    "TokenAccountFact",
    "TokenLock",
    "TokenMetadata",
    "VestingSchedule",
    "VestingType",
    "WalletBalance",
    "WalletLedgerView",
    "WalletOutcome",
]
