"""
SQLite engine on aiosqlite.

Used for local runs and the test-suite. Every unit of work opens its own
connection so concurrent requests behave like separate server processes.
The vote transaction starts with BEGIN IMMEDIATE, which takes the database
write lock before the voted flag is read.
"""
import logging
import os
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List, Optional

import aiosqlite

from ballotbox.shared.models import Candidate, Session, User, VoteReceipt, utc_now
from .base import (
    DuplicateEmailError,
    DuplicateVoteError,
    Ledger,
    StorageError,
    VoteTransaction,
)
from .schema import SQLITE_SCHEMA

logger = logging.getLogger(__name__)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SqliteVoteTransaction(VoteTransaction):
    """Vote transaction bound to one aiosqlite connection."""

    def __init__(self, conn: aiosqlite.Connection):
        self.conn = conn

    async def lock_voter(self, voter_id: int) -> Optional[bool]:
        # The write lock is already held since BEGIN IMMEDIATE
        async with self.conn.execute(
            "SELECT voted FROM users WHERE id = ?", (voter_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return None if row is None else bool(row[0])

    async def candidate_exists(self, name: str) -> bool:
        async with self.conn.execute(
            "SELECT 1 FROM candidates WHERE name = ?", (name,)
        ) as cursor:
            return await cursor.fetchone() is not None

    async def insert_vote(self, voter_id: int, candidate_name: str, cast_at: datetime) -> None:
        try:
            await self.conn.execute(
                "INSERT INTO votes (voter_id, candidate_name, cast_at) VALUES (?, ?, ?)",
                (voter_id, candidate_name, cast_at.isoformat()),
            )
        except sqlite3.IntegrityError as e:
            if "votes.voter_id" in str(e):
                raise DuplicateVoteError(f"Vote already recorded for voter {voter_id}") from e
            raise

    async def increment_candidate(self, name: str) -> None:
        await self.conn.execute(
            "UPDATE candidates SET votes = votes + 1 WHERE name = ?", (name,)
        )

    async def mark_voted(self, voter_id: int) -> None:
        await self.conn.execute("UPDATE users SET voted = 1 WHERE id = ?", (voter_id,))
        await self.conn.execute("UPDATE sessions SET voted = 1 WHERE voter_id = ?", (voter_id,))


class SqliteLedger(Ledger):
    """Ledger stored in a single SQLite file."""

    def __init__(self, path: str, busy_timeout: float = 5.0):
        """
        Args:
            path: Database file. In-memory databases are not supported since
                each unit of work opens its own connection.
            busy_timeout: Seconds to wait for the write lock before failing
        """
        if not path or path == ":memory:":
            raise ValueError("SqliteLedger needs a file path")
        self.path = path
        self.busy_timeout = busy_timeout

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection in autocommit mode; driver errors become StorageError."""
        try:
            conn = await aiosqlite.connect(
                self.path, timeout=self.busy_timeout, isolation_level=None
            )
        except sqlite3.Error as e:
            logger.error(f"Failed to open SQLite database {self.path}: {e}")
            raise StorageError(f"Cannot open database: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as e:
            logger.error(f"SQLite error: {e}")
            raise StorageError(str(e)) from e
        finally:
            await conn.close()

    async def initialize(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

        async with self._connection() as conn:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.executescript(SQLITE_SCHEMA)
        logger.info(f"SQLite ledger ready at {self.path}")

    async def close(self) -> None:
        # Connections are per unit of work, nothing is held open
        pass

    async def check_health(self) -> bool:
        try:
            async with self._connection() as conn:
                await conn.execute("SELECT 1")
            return True
        except StorageError as e:
            logger.error(f"SQLite health check failed: {e}")
            return False

    @asynccontextmanager
    async def vote_transaction(self) -> AsyncIterator[VoteTransaction]:
        async with self._connection() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield SqliteVoteTransaction(conn)
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()

    # Credential store

    async def get_user_by_email(self, email: str) -> Optional[User]:
        async with self._connection() as conn:
            async with conn.execute(
                "SELECT id, full_name, email, password_hash, voted FROM users WHERE email = ?",
                (email,),
            ) as cursor:
                row = await cursor.fetchone()
        return self._user(row)

    async def get_user(self, voter_id: int) -> Optional[User]:
        async with self._connection() as conn:
            async with conn.execute(
                "SELECT id, full_name, email, password_hash, voted FROM users WHERE id = ?",
                (voter_id,),
            ) as cursor:
                row = await cursor.fetchone()
        return self._user(row)

    @staticmethod
    def _user(row) -> Optional[User]:
        if row is None:
            return None
        return User(
            id=row["id"],
            full_name=row["full_name"],
            email=row["email"],
            password_hash=row["password_hash"],
            voted=bool(row["voted"]),
        )

    async def create_user(self, full_name: str, email: str, password_hash: str) -> int:
        async with self._connection() as conn:
            try:
                cursor = await conn.execute(
                    "INSERT INTO users (full_name, email, password_hash) VALUES (?, ?, ?)",
                    (full_name, email, password_hash),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateEmailError(f"Email already registered: {email}") from e
            user_id = cursor.lastrowid
            await cursor.close()
        return user_id

    # Candidates and vote records

    async def add_candidate(self, name: str, symbol: str) -> bool:
        async with self._connection() as conn:
            cursor = await conn.execute(
                "INSERT INTO candidates (name, symbol) VALUES (?, ?) "
                "ON CONFLICT (name) DO NOTHING",
                (name, symbol),
            )
            inserted = cursor.rowcount == 1
            await cursor.close()
        return inserted

    async def list_candidates(self) -> List[Candidate]:
        async with self._connection() as conn:
            async with conn.execute(
                "SELECT name, symbol, votes FROM candidates ORDER BY votes DESC, name"
            ) as cursor:
                rows = await cursor.fetchall()
        return [Candidate(name=r["name"], symbol=r["symbol"], votes=r["votes"]) for r in rows]

    async def count_vote_records(self, voter_id: Optional[int] = None) -> int:
        async with self._connection() as conn:
            if voter_id is None:
                query, params = "SELECT COUNT(*) FROM votes", ()
            else:
                query, params = "SELECT COUNT(*) FROM votes WHERE voter_id = ?", (voter_id,)
            async with conn.execute(query, params) as cursor:
                row = await cursor.fetchone()
        return row[0]

    async def get_vote(self, voter_id: int) -> Optional[VoteReceipt]:
        async with self._connection() as conn:
            async with conn.execute(
                "SELECT voter_id, candidate_name, cast_at FROM votes WHERE voter_id = ?",
                (voter_id,),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return VoteReceipt(
            voter_id=row["voter_id"],
            candidate_name=row["candidate_name"],
            cast_at=_parse_ts(row["cast_at"]),
        )

    # Sessions

    async def save_session(self, session: Session) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO sessions
                (token, voter_id, full_name, email, voted, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.token,
                    session.voter_id,
                    session.full_name,
                    session.email,
                    int(session.voted),
                    utc_now().isoformat(),
                    session.expires_at.isoformat(),
                ),
            )

    async def load_session(self, token: str) -> Optional[Session]:
        async with self._connection() as conn:
            async with conn.execute(
                "SELECT token, voter_id, full_name, email, voted, expires_at "
                "FROM sessions WHERE token = ?",
                (token,),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return None
        return Session(
            voter_id=row["voter_id"],
            full_name=row["full_name"],
            email=row["email"],
            voted=bool(row["voted"]),
            token=row["token"],
            expires_at=_parse_ts(row["expires_at"]),
        )

    async def delete_session(self, token: str) -> None:
        async with self._connection() as conn:
            await conn.execute("DELETE FROM sessions WHERE token = ?", (token,))

    async def purge_sessions(self, before: datetime) -> int:
        async with self._connection() as conn:
            cursor = await conn.execute(
                "DELETE FROM sessions WHERE expires_at < ?", (before.isoformat(),)
            )
            purged = cursor.rowcount
            await cursor.close()
        return purged
