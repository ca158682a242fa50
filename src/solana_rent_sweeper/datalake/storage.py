"""Repositories holding lock and vesting records."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol

from .schemas import TokenLock, VestingSchedule, VestingType


class LedgerRepository(Protocol):
    """Interface describing ledger backends (memory, SQLite, ...)."""

    def save_lock(self, lock: TokenLock) -> None:
        ...

    def get_lock(self, lock_id: str) -> Optional[TokenLock]:
        ...

    def list_locks_for_wallet(self, wallet: str) -> List[TokenLock]:
        ...

    def save_vesting(self, schedule: VestingSchedule) -> None:
        ...

    def get_vesting(self, vesting_id: str) -> Optional[VestingSchedule]:
        ...

    def list_vestings_for_wallet(self, wallet: str) -> List[VestingSchedule]:
        ...


class InMemoryLedgerRepository:
    """Process-local repository; records are copied in and out so callers cannot alias them."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._locks: Dict[str, TokenLock] = {}
        self._vestings: Dict[str, VestingSchedule] = {}

    def save_lock(self, lock: TokenLock) -> None:
        with self._lock:
            self._locks[lock.id] = replace(lock)

    def get_lock(self, lock_id: str) -> Optional[TokenLock]:
        with self._lock:
            lock = self._locks.get(lock_id)
            return replace(lock) if lock is not None else None

    def list_locks_for_wallet(self, wallet: str) -> List[TokenLock]:
        with self._lock:
            return [
                replace(lock)
                for lock in self._locks.values()
                if wallet in (lock.owner, lock.beneficiary)
            ]

    def save_vesting(self, schedule: VestingSchedule) -> None:
        with self._lock:
            self._vestings[schedule.id] = replace(schedule)

    def get_vesting(self, vesting_id: str) -> Optional[VestingSchedule]:
        with self._lock:
            schedule = self._vestings.get(vesting_id)
            return replace(schedule) if schedule is not None else None

    def list_vestings_for_wallet(self, wallet: str) -> List[VestingSchedule]:
        with self._lock:
            return [
                replace(schedule)
                for schedule in self._vestings.values()
                if wallet in (schedule.owner, schedule.beneficiary)
            ]


CREATE_LOCK_TABLE = """
CREATE TABLE IF NOT EXISTS token_locks (
    id TEXT PRIMARY KEY,
    token_mint TEXT NOT NULL,
    token_account TEXT NOT NULL,
    owner TEXT NOT NULL,
    beneficiary TEXT NOT NULL,
    total_amount TEXT NOT NULL,
    locked_amount TEXT NOT NULL,
    unlock_time TEXT NOT NULL,
    is_revocable INTEGER NOT NULL,
    is_revoked INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

CREATE_VESTING_TABLE = """
CREATE TABLE IF NOT EXISTS vesting_schedules (
    id TEXT PRIMARY KEY,
    token_mint TEXT NOT NULL,
    token_account TEXT NOT NULL,
    owner TEXT NOT NULL,
    beneficiary TEXT NOT NULL,
    total_amount TEXT NOT NULL,
    vested_amount TEXT NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    cliff_time TEXT,
    vesting_type TEXT NOT NULL,
    is_revocable INTEGER NOT NULL,
    is_revoked INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

CREATE_LOCK_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_locks_owner ON token_locks(owner)",
    "CREATE INDEX IF NOT EXISTS idx_locks_beneficiary ON token_locks(beneficiary)",
    "CREATE INDEX IF NOT EXISTS idx_vestings_owner ON vesting_schedules(owner)",
    "CREATE INDEX IF NOT EXISTS idx_vestings_beneficiary ON vesting_schedules(beneficiary)",
)

_LOCK_COLUMNS = (
    "id, token_mint, token_account, owner, beneficiary, total_amount, locked_amount, "
    "unlock_time, is_revocable, is_revoked, created_at, updated_at"
)
_VESTING_COLUMNS = (
    "id, token_mint, token_account, owner, beneficiary, total_amount, vested_amount, "
    "start_time, end_time, cliff_time, vesting_type, is_revocable, is_revoked, created_at, updated_at"
)


class SQLiteLedgerRepository:
    """SQLite-backed ledger; token amounts are stored as TEXT to keep full u64 range."""

    def __init__(self, database_path: Path) -> None:
        self._database_path = Path(database_path)
        self._initialize()

    def _initialize(self) -> None:
        self._database_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as con:
            con.execute(CREATE_LOCK_TABLE)
            con.execute(CREATE_VESTING_TABLE)
            for statement in CREATE_LOCK_INDEXES:
                con.execute(statement)
            con.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        con = sqlite3.connect(self._database_path)
        try:
            yield con
        finally:
            con.close()

    def save_lock(self, lock: TokenLock) -> None:
        with self._connect() as con:
            con.execute(
                f"""
                INSERT INTO token_locks ({_LOCK_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    locked_amount = excluded.locked_amount,
                    is_revoked = excluded.is_revoked,
                    updated_at = excluded.updated_at
                """,
                (
                    lock.id,
                    lock.token_mint,
                    lock.token_account,
                    lock.owner,
                    lock.beneficiary,
                    str(lock.total_amount),
                    str(lock.locked_amount),
                    lock.unlock_time.isoformat(),
                    int(lock.is_revocable),
                    int(lock.is_revoked),
                    lock.created_at.isoformat(),
                    lock.updated_at.isoformat(),
                ),
            )
            con.commit()

    def get_lock(self, lock_id: str) -> Optional[TokenLock]:
        with self._connect() as con:
            row = con.execute(f"SELECT {_LOCK_COLUMNS} FROM token_locks WHERE id = ?", (lock_id,)).fetchone()
        return self._row_to_lock(row) if row is not None else None

    def list_locks_for_wallet(self, wallet: str) -> List[TokenLock]:
        with self._connect() as con:
            rows = con.execute(
                f"SELECT {_LOCK_COLUMNS} FROM token_locks WHERE owner = ? OR beneficiary = ? ORDER BY created_at",
                (wallet, wallet),
            ).fetchall()
        return [self._row_to_lock(row) for row in rows]

    def save_vesting(self, schedule: VestingSchedule) -> None:
        with self._connect() as con:
            con.execute(
                f"""
                INSERT INTO vesting_schedules ({_VESTING_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    vested_amount = excluded.vested_amount,
                    is_revoked = excluded.is_revoked,
                    updated_at = excluded.updated_at
                """,
                (
                    schedule.id,
                    schedule.token_mint,
                    schedule.token_account,
                    schedule.owner,
                    schedule.beneficiary,
                    str(schedule.total_amount),
                    str(schedule.vested_amount),
                    schedule.start_time.isoformat(),
                    schedule.end_time.isoformat(),
                    schedule.cliff_time.isoformat() if schedule.cliff_time else None,
                    schedule.vesting_type.value,
                    int(schedule.is_revocable),
                    int(schedule.is_revoked),
                    schedule.created_at.isoformat(),
                    schedule.updated_at.isoformat(),
                ),
            )
            con.commit()

    def get_vesting(self, vesting_id: str) -> Optional[VestingSchedule]:
        with self._connect() as con:
            row = con.execute(
                f"SELECT {_VESTING_COLUMNS} FROM vesting_schedules WHERE id = ?", (vesting_id,)
            ).fetchone()
        return self._row_to_vesting(row) if row is not None else None

    def list_vestings_for_wallet(self, wallet: str) -> List[VestingSchedule]:
        with self._connect() as con:
            rows = con.execute(
                f"SELECT {_VESTING_COLUMNS} FROM vesting_schedules "
                "WHERE owner = ? OR beneficiary = ? ORDER BY created_at",
                (wallet, wallet),
            ).fetchall()
        return [self._row_to_vesting(row) for row in rows]

    @staticmethod
    def _row_to_lock(row: tuple) -> TokenLock:
        return TokenLock(
            id=row[0],
            token_mint=row[1],
            token_account=row[2],
            owner=row[3],
            beneficiary=row[4],
            total_amount=int(row[5]),
            locked_amount=int(row[6]),
            unlock_time=datetime.fromisoformat(row[7]),
            is_revocable=bool(row[8]),
            is_revoked=bool(row[9]),
            created_at=datetime.fromisoformat(row[10]),
            updated_at=datetime.fromisoformat(row[11]),
        )

    @staticmethod
    def _row_to_vesting(row: tuple) -> VestingSchedule:
        return VestingSchedule(
            id=row[0],
            token_mint=row[1],
            token_account=row[2],
            owner=row[3],
            beneficiary=row[4],
            total_amount=int(row[5]),
            vested_amount=int(row[6]),
            start_time=datetime.fromisoformat(row[7]),
            end_time=datetime.fromisoformat(row[8]),
            cliff_time=datetime.fromisoformat(row[9]) if row[9] else None,
            vesting_type=VestingType(row[10]),
            is_revocable=bool(row[11]),
            is_revoked=bool(row[12]),
            created_at=datetime.fromisoformat(row[13]),
            updated_at=datetime.fromisoformat(row[14]),
        )


__all__ = ["InMemoryLedgerRepository", "LedgerRepository", "SQLiteLedgerRepository"]
