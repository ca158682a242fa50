"""Lock and vesting ledger with the claim/revoke state machine."""

from __future__ import annotations

import asyncio
import uuid
import weakref
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional, Union

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import transfer
from spl.token.models import TransferParams

from ..datalake.schemas import (
    CreateLockRequest,
    CreateVestingRequest,
    LedgerTransfer,
    TokenLock,
    VestingSchedule,
    VestingType,
    WalletLedgerView,
)
from ..datalake.storage import InMemoryLedgerRepository, LedgerRepository
from ..execution.wallet import parse_pubkey, validate_wallet_address
from ..ingestion.onchain import TokenAccountReader
from ..monitoring.logger import get_logger
from ..monitoring.metrics import METRICS
from ..utils.constants import utc_now
from ..utils.errors import (
    AlreadyRevoked,
    InsufficientBalance,
    InvalidRequest,
    NotBeneficiary,
    NotFound,
    NothingToClaim,
    NotOwner,
    NotRevocable,
    NotStarted,
    NotYetUnlocked,
)
from .vesting import claimable_amount, vested_amount_at


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def holding_transfer(token_account: str, authority: str, amount: int) -> Instruction:
    """Token transfer from ``token_account`` back to itself, signed by ``authority``.

    The ledger keeps custody as bookkeeping only; the instruction gives the
    signer an on-chain receipt without moving funds elsewhere.
    """

    account = Pubkey.from_string(token_account)
    return transfer(
        TransferParams(
            program_id=TOKEN_PROGRAM_ID,
            source=account,
            dest=account,
            owner=Pubkey.from_string(authority),
            amount=amount,
        )
    )


class LockVestingLedger:
    """Tracks token locks and vesting schedules keyed by opaque ids.

    Mutations of a single record are serialized with a per-id ``asyncio.Lock``
    so concurrent claim/revoke calls cannot both pay out the same balance.
    Locks exist only for known records and only while someone holds or
    awaits them.
    """

    def __init__(
        self,
        reader: TokenAccountReader,
        repository: Optional[LedgerRepository] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._reader = reader
        self._repository: LedgerRepository = repository or InMemoryLedgerRepository()
        self._clock = clock
        self._id_factory = id_factory
        self._record_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._logger = get_logger(__name__)

    def _now(self) -> datetime:
        return _as_utc(self._clock())

    @asynccontextmanager
    async def _guard(self, record_id: str) -> AsyncIterator[None]:
        lock = self._record_locks.get(record_id)
        if lock is None:
            lock = asyncio.Lock()
            self._record_locks[record_id] = lock
        async with lock:
            yield

    async def _validate_source(self, owner: str, token_account: str, token_mint: str, amount: int) -> None:
        if amount <= 0:
            raise InvalidRequest("Amount must be greater than zero")
        account = await self._reader.get_token_account(parse_pubkey(token_account))
        if account is None:
            raise NotFound(f"Token account {token_account} not found")
        if account.owner != owner:
            raise NotOwner("Token account is not owned by the requesting wallet")
        if account.mint != token_mint:
            raise InvalidRequest(f"Token account holds mint {account.mint}, not {token_mint}")
        if account.amount < amount:
            raise InsufficientBalance(f"Token account holds {account.amount}, requested {amount}")

    async def create_lock(self, owner: Union[str, Pubkey], request: CreateLockRequest) -> LedgerTransfer:
        owner_key = str(validate_wallet_address(owner))
        beneficiary = str(parse_pubkey(request.beneficiary))
        now = self._now()
        unlock_time = _as_utc(request.unlock_time)
        if unlock_time <= now:
            raise InvalidRequest("Unlock time must be in the future")
        await self._validate_source(owner_key, request.token_account, request.token_mint, request.amount)

        lock = TokenLock(
            id=self._id_factory(),
            token_mint=request.token_mint,
            token_account=request.token_account,
            owner=owner_key,
            beneficiary=beneficiary,
            total_amount=request.amount,
            locked_amount=request.amount,
            unlock_time=unlock_time,
            is_revocable=request.is_revocable,
            created_at=now,
            updated_at=now,
        )
        self._repository.save_lock(lock)
        METRICS.increment("ledger.locks_created")
        self._logger.info("Created lock %s", lock.id, extra={"owner": owner_key, "amount": str(lock.total_amount)})
        return LedgerTransfer(
            record_id=lock.id,
            instruction=holding_transfer(lock.token_account, owner_key, lock.total_amount),
            amount=lock.total_amount,
        )

    async def create_vesting(self, owner: Union[str, Pubkey], request: CreateVestingRequest) -> LedgerTransfer:
        owner_key = str(validate_wallet_address(owner))
        beneficiary = str(parse_pubkey(request.beneficiary))
        start = _as_utc(request.start_time)
        end = _as_utc(request.end_time)
        cliff = _as_utc(request.cliff_time) if request.cliff_time is not None else None
        try:
            vesting_type = VestingType(request.vesting_type)
        except ValueError as exc:
            raise InvalidRequest(f"Unknown vesting type {request.vesting_type!r}") from exc
        if end <= start:
            raise InvalidRequest("End time must be after start time")
        if cliff is not None and not start <= cliff <= end:
            raise InvalidRequest("Cliff time must fall between start and end time")
        if vesting_type is VestingType.CLIFF and cliff is None:
            raise InvalidRequest("Cliff vesting requires a cliff time")
        await self._validate_source(owner_key, request.token_account, request.token_mint, request.amount)

        now = self._now()
        schedule = VestingSchedule(
            id=self._id_factory(),
            token_mint=request.token_mint,
            token_account=request.token_account,
            owner=owner_key,
            beneficiary=beneficiary,
            total_amount=request.amount,
            vested_amount=0,
            start_time=start,
            end_time=end,
            cliff_time=cliff,
            vesting_type=vesting_type,
            is_revocable=request.is_revocable,
            created_at=now,
            updated_at=now,
        )
        self._repository.save_vesting(schedule)
        METRICS.increment("ledger.vestings_created")
        self._logger.info(
            "Created %s vesting %s", vesting_type.value, schedule.id, extra={"owner": owner_key}
        )
        return LedgerTransfer(
            record_id=schedule.id,
            instruction=holding_transfer(schedule.token_account, owner_key, schedule.total_amount),
            amount=schedule.total_amount,
        )

    async def claim_from_lock(self, lock_id: str, beneficiary: Union[str, Pubkey]) -> LedgerTransfer:
        claimant = str(parse_pubkey(beneficiary))
        # Unknown ids fail here, before a record lock is allocated.
        self.get_lock(lock_id)
        async with self._guard(lock_id):
            lock = self.get_lock(lock_id)
            if claimant != lock.beneficiary:
                raise NotBeneficiary("Only the beneficiary can claim this lock")
            now = self._now()
            if now < lock.unlock_time:
                raise NotYetUnlocked(f"Lock unlocks at {lock.unlock_time.isoformat()}")
            if lock.is_revoked:
                raise AlreadyRevoked("Lock has been revoked")
            if lock.locked_amount == 0:
                raise NothingToClaim("Lock has already been claimed")
            amount = lock.locked_amount
            lock.locked_amount = 0
            lock.updated_at = now
            self._repository.save_lock(lock)
        METRICS.increment("ledger.lock_claims")
        self._logger.info("Claimed lock %s", lock_id, extra={"amount": str(amount)})
        return LedgerTransfer(
            record_id=lock_id,
            instruction=holding_transfer(lock.token_account, claimant, amount),
            amount=amount,
        )

    async def claim_from_vesting(self, vesting_id: str, beneficiary: Union[str, Pubkey]) -> LedgerTransfer:
        claimant = str(parse_pubkey(beneficiary))
        self.get_vesting(vesting_id)
        async with self._guard(vesting_id):
            schedule = self.get_vesting(vesting_id)
            if claimant != schedule.beneficiary:
                raise NotBeneficiary("Only the beneficiary can claim this vesting schedule")
            now = self._now()
            if now < schedule.start_time:
                raise NotStarted(f"Vesting starts at {schedule.start_time.isoformat()}")
            if schedule.is_revoked:
                raise AlreadyRevoked("Vesting schedule has been revoked")
            vested = vested_amount_at(schedule, now)
            delta = vested - schedule.vested_amount
            if delta <= 0:
                raise NothingToClaim("No newly vested tokens to claim")
            schedule.vested_amount = max(vested, schedule.vested_amount)
            schedule.updated_at = now
            self._repository.save_vesting(schedule)
        METRICS.increment("ledger.vesting_claims")
        self._logger.info("Claimed %s from vesting %s", delta, vesting_id)
        return LedgerTransfer(
            record_id=vesting_id,
            instruction=holding_transfer(schedule.token_account, claimant, delta),
            amount=delta,
        )

    async def revoke(self, record_id: str, owner: Union[str, Pubkey]) -> LedgerTransfer:
        """Return the unreleased balance of a lock or vesting schedule to its owner."""

        requester = str(parse_pubkey(owner))
        if self._repository.get_lock(record_id) is None and self._repository.get_vesting(record_id) is None:
            raise NotFound(f"Lock or vesting schedule {record_id} not found")
        async with self._guard(record_id):
            lock = self._repository.get_lock(record_id)
            if lock is not None:
                return self._revoke_lock(lock, requester)
            schedule = self._repository.get_vesting(record_id)
            if schedule is not None:
                return self._revoke_vesting(schedule, requester)
        raise NotFound(f"Lock or vesting schedule {record_id} not found")

    def _revoke_lock(self, lock: TokenLock, requester: str) -> LedgerTransfer:
        if not lock.is_revocable:
            raise NotRevocable("Lock is not revocable")
        if requester != lock.owner:
            raise NotOwner("Only the owner can revoke this lock")
        if lock.is_revoked:
            raise AlreadyRevoked("Lock has already been revoked")
        if lock.locked_amount == 0:
            raise NothingToClaim("Lock has already been claimed")
        amount = lock.locked_amount
        lock.locked_amount = 0
        lock.is_revoked = True
        lock.updated_at = self._now()
        self._repository.save_lock(lock)
        METRICS.increment("ledger.revocations")
        self._logger.info("Revoked lock %s", lock.id, extra={"amount": str(amount)})
        return LedgerTransfer(
            record_id=lock.id,
            instruction=holding_transfer(lock.token_account, requester, amount),
            amount=amount,
        )

    def _revoke_vesting(self, schedule: VestingSchedule, requester: str) -> LedgerTransfer:
        if not schedule.is_revocable:
            raise NotRevocable("Vesting schedule is not revocable")
        if requester != schedule.owner:
            raise NotOwner("Only the owner can revoke this vesting schedule")
        if schedule.is_revoked:
            raise AlreadyRevoked("Vesting schedule has already been revoked")
        amount = schedule.total_amount - schedule.vested_amount
        if amount <= 0:
            raise NothingToClaim("Vesting schedule is fully released")
        schedule.is_revoked = True
        schedule.updated_at = self._now()
        self._repository.save_vesting(schedule)
        METRICS.increment("ledger.revocations")
        self._logger.info("Revoked vesting %s", schedule.id, extra={"amount": str(amount)})
        return LedgerTransfer(
            record_id=schedule.id,
            instruction=holding_transfer(schedule.token_account, requester, amount),
            amount=amount,
        )

    def get_lock(self, lock_id: str) -> TokenLock:
        lock = self._repository.get_lock(lock_id)
        if lock is None:
            raise NotFound(f"Lock {lock_id} not found")
        return lock

    def get_vesting(self, vesting_id: str) -> VestingSchedule:
        schedule = self._repository.get_vesting(vesting_id)
        if schedule is None:
            raise NotFound(f"Vesting schedule {vesting_id} not found")
        return schedule

    def claimable(self, vesting_id: str) -> int:
        """Amount the beneficiary could claim right now, without mutating the record."""

        return claimable_amount(self.get_vesting(vesting_id), self._now())

    def list_for_wallet(self, wallet: Union[str, Pubkey]) -> WalletLedgerView:
        address = str(parse_pubkey(wallet))
        return WalletLedgerView(
            locks=self._repository.list_locks_for_wallet(address),
            vestings=self._repository.list_vestings_for_wallet(address),
        )


__all__ = ["LockVestingLedger", "holding_transfer"]
