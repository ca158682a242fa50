from datetime import datetime, timedelta, timezone

from solana_rent_sweeper.datalake.schemas import TokenLock, VestingSchedule, VestingType
from solana_rent_sweeper.datalake.storage import InMemoryLedgerRepository, SQLiteLedgerRepository

NOW = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
U64_MAX = 2**64 - 1


def _lock(lock_id: str = "lock-1", owner: str = "owner", beneficiary: str = "beneficiary") -> TokenLock:
    return TokenLock(
        id=lock_id,
        token_mint="mint",
        token_account="account",
        owner=owner,
        beneficiary=beneficiary,
        total_amount=U64_MAX,
        locked_amount=U64_MAX,
        unlock_time=NOW + timedelta(days=30),
        is_revocable=True,
        created_at=NOW,
        updated_at=NOW,
    )


def _vesting(vesting_id: str = "vest-1") -> VestingSchedule:
    return VestingSchedule(
        id=vesting_id,
        token_mint="mint",
        token_account="account",
        owner="owner",
        beneficiary="beneficiary",
        total_amount=10**20,
        vested_amount=0,
        start_time=NOW,
        end_time=NOW + timedelta(days=365),
        vesting_type=VestingType.CLIFF,
        is_revocable=False,
        created_at=NOW,
        updated_at=NOW,
        cliff_time=NOW + timedelta(days=90),
    )


def test_sqlite_round_trips_full_u64_amounts(tmp_path) -> None:
    repo = SQLiteLedgerRepository(tmp_path / "nested" / "ledger.sqlite3")
    lock = _lock()
    repo.save_lock(lock)
    assert repo.get_lock("lock-1") == lock

    lock.locked_amount = 0
    lock.is_revoked = True
    lock.updated_at = NOW + timedelta(days=1)
    repo.save_lock(lock)
    stored = repo.get_lock("lock-1")
    assert stored.locked_amount == 0
    assert stored.is_revoked
    assert stored.total_amount == U64_MAX
    assert repo.get_lock("missing") is None


def test_sqlite_vesting_survives_reopen(tmp_path) -> None:
    path = tmp_path / "ledger.sqlite3"
    SQLiteLedgerRepository(path).save_vesting(_vesting())
    reopened = SQLiteLedgerRepository(path)
    schedule = reopened.get_vesting("vest-1")
    assert schedule == _vesting()
    assert schedule.vesting_type is VestingType.CLIFF


def test_list_for_wallet_matches_owner_or_beneficiary(tmp_path) -> None:
    for repo in (InMemoryLedgerRepository(), SQLiteLedgerRepository(tmp_path / "ledger.sqlite3")):
        repo.save_lock(_lock("a", owner="alice", beneficiary="bob"))
        repo.save_lock(_lock("b", owner="carol", beneficiary="alice"))
        repo.save_lock(_lock("c", owner="carol", beneficiary="dave"))
        assert sorted(lock.id for lock in repo.list_locks_for_wallet("alice")) == ["a", "b"]
        assert [lock.id for lock in repo.list_locks_for_wallet("dave")] == ["c"]
        assert repo.list_vestings_for_wallet("alice") == []


def test_memory_repository_returns_copies() -> None:
    repo = InMemoryLedgerRepository()
    repo.save_lock(_lock())
    fetched = repo.get_lock("lock-1")
    fetched.locked_amount = 1
    assert repo.get_lock("lock-1").locked_amount == U64_MAX
