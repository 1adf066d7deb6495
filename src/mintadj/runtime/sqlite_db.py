# src/mintadj/runtime/sqlite_db.py
from __future__ import annotations

import os
import random
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional

from mintadj.ledger.accounts import AccountState
from mintadj.ledger.adjustments import AdjustmentRecord
from mintadj.runtime.errors import DataError


def _now_ms() -> int:
    return int(time.time() * 1000)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


class SqliteDB:
    """SQLite manager for account minting state.

    Connections are never shared; every read or write opens its own.

    SQLite allows only one writer at a time, so BEGIN IMMEDIATE can
    transiently fail with "database is locked". write_tx() retries with a
    bounded deadline.
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """FULL in prod, NORMAL otherwise; override with MINTADJ_SQLITE_SYNCHRONOUS."""
        mode = (os.environ.get("MINTADJ_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("MINTADJ_SQLITE_SYNCHRONOUS") or default).strip().upper()

        if raw not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()

        connect_timeout_s = float(_env_int("MINTADJ_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0

        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        con.execute("PRAGMA journal_mode=WAL;")
        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")

        busy_ms = max(0, _env_int("MINTADJ_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")

        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )

            con.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                  address TEXT PRIMARY KEY,
                  blocks_minted INTEGER NOT NULL DEFAULT 0,
                  blocks_minted_adjustment INTEGER NOT NULL DEFAULT 0,
                  blocks_minted_penalty INTEGER NOT NULL DEFAULT 0,
                  level INTEGER NOT NULL DEFAULT 0,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except ValueError:
                    v = 0
                if v != self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"sqlite schema_version mismatch: have={v} want={self.SCHEMA_VERSION}. "
                        "Refuse to start to avoid corrupting data."
                    )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return ("database is locked" in msg) or ("database is busy" in msg)

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction with bounded retry on writer-lock contention.

        Policy:
          - retry BEGIN IMMEDIATE until a deadline
          - exponential backoff with jitter
          - then raise if the lock cannot be acquired within the deadline
          - any exception inside the block rolls the transaction back
        """
        deadline_ms = max(250, _env_int("MINTADJ_SQLITE_WRITE_DEADLINE_MS", 30_000))
        deadline_ts = _now_ms() + deadline_ms

        base_sleep = max(0.001, float(_env_int("MINTADJ_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0)
        max_sleep = max(base_sleep, float(_env_int("MINTADJ_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0)

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
                    time.sleep(sleep_s * (0.5 + random.random()))
                    attempt += 1

            try:
                yield con
                con.execute("COMMIT;")
            except BaseException:
                try:
                    con.execute("ROLLBACK;")
                except sqlite3.Error:
                    pass
                raise


class SqliteAccountRepository:
    """AccountRepository bound to an open connection.

    The repository never begins or commits a transaction itself. Use it inside
    SqliteDB.write_tx() so the whole block (adjustment included) commits or
    rolls back together.
    """

    def __init__(self, con: sqlite3.Connection) -> None:
        self._con = con

    def get_account(self, address: str) -> Optional[AccountState]:
        try:
            row = self._con.execute(
                """
                SELECT address, blocks_minted, blocks_minted_adjustment, blocks_minted_penalty, level
                FROM accounts WHERE address=?;
                """,
                (address,),
            ).fetchone()
        except sqlite3.Error as e:
            raise DataError("db_error", "get_account_failed", {"address": address, "error": str(e)}) from e

        if row is None:
            return None
        return AccountState(
            address=str(row["address"]),
            blocks_minted=int(row["blocks_minted"]),
            blocks_minted_adjustment=int(row["blocks_minted_adjustment"]),
            blocks_minted_penalty=int(row["blocks_minted_penalty"]),
            level=int(row["level"]),
        )

    def save_account(self, account: AccountState) -> None:
        try:
            self._con.execute(
                """
                INSERT INTO accounts(address, blocks_minted, blocks_minted_adjustment, blocks_minted_penalty, level, updated_ts_ms)
                VALUES(?, ?, ?, ?, ?, ?)
                ON CONFLICT(address) DO UPDATE SET
                  blocks_minted=excluded.blocks_minted,
                  blocks_minted_adjustment=excluded.blocks_minted_adjustment,
                  blocks_minted_penalty=excluded.blocks_minted_penalty,
                  level=excluded.level,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                (
                    account.address,
                    int(account.blocks_minted),
                    int(account.blocks_minted_adjustment),
                    int(account.blocks_minted_penalty),
                    int(account.level),
                    _now_ms(),
                ),
            )
        except sqlite3.Error as e:
            raise DataError("db_error", "save_account_failed", {"address": account.address, "error": str(e)}) from e

    def update_blocks_minted_adjustments(self, records: Iterable[AdjustmentRecord]) -> None:
        now = _now_ms()
        rows = [(r.address, int(r.delta), now) for r in records]
        try:
            # Unknown accounts are created with the delta as their adjustment.
            self._con.executemany(
                """
                INSERT INTO accounts(address, blocks_minted_adjustment, updated_ts_ms)
                VALUES(?, ?, ?)
                ON CONFLICT(address) DO UPDATE SET
                  blocks_minted_adjustment=blocks_minted_adjustment + excluded.blocks_minted_adjustment,
                  updated_ts_ms=excluded.updated_ts_ms;
                """,
                rows,
            )
        except sqlite3.Error as e:
            raise DataError("db_error", "update_blocks_minted_adjustments_failed", {"error": str(e)}) from e

    def set_level(self, account: AccountState) -> None:
        try:
            cur = self._con.execute(
                "UPDATE accounts SET level=?, updated_ts_ms=? WHERE address=?;",
                (int(account.level), _now_ms(), account.address),
            )
        except sqlite3.Error as e:
            raise DataError("db_error", "set_level_failed", {"address": account.address, "error": str(e)}) from e
        if cur.rowcount != 1:
            raise DataError("account_missing", "set_level_on_unknown_account", account.address)
