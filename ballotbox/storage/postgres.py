"""PostgreSQL engine on an asyncpg connection pool."""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List, Optional

import asyncpg

from ballotbox.shared.models import Candidate, Session, User, VoteReceipt
from .base import (
    DuplicateEmailError,
    DuplicateVoteError,
    Ledger,
    StorageError,
    VoteTransaction,
)
from .schema import EMAIL_UNIQUE_CONSTRAINT, POSTGRES_SCHEMA, VOTE_UNIQUE_CONSTRAINT

logger = logging.getLogger(__name__)

# Driver failures that are reported to callers as StorageError
_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


class PostgresVoteTransaction(VoteTransaction):
    """Vote transaction bound to one pooled connection."""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def lock_voter(self, voter_id: int) -> Optional[bool]:
        return await self.conn.fetchval(
            "SELECT voted FROM users WHERE id = $1 FOR UPDATE", voter_id
        )

    async def candidate_exists(self, name: str) -> bool:
        found = await self.conn.fetchval("SELECT 1 FROM candidates WHERE name = $1", name)
        return found is not None

    async def insert_vote(self, voter_id: int, candidate_name: str, cast_at: datetime) -> None:
        try:
            await self.conn.execute(
                """
                INSERT INTO votes (voter_id, candidate_name, cast_at)
                VALUES ($1, $2, $3)
                """,
                voter_id, candidate_name, cast_at
            )
        except asyncpg.UniqueViolationError as e:
            if e.constraint_name == VOTE_UNIQUE_CONSTRAINT:
                raise DuplicateVoteError(f"Vote already recorded for voter {voter_id}") from e
            raise

    async def increment_candidate(self, name: str) -> None:
        await self.conn.execute(
            "UPDATE candidates SET votes = votes + 1 WHERE name = $1", name
        )

    async def mark_voted(self, voter_id: int) -> None:
        await self.conn.execute("UPDATE users SET voted = TRUE WHERE id = $1", voter_id)
        await self.conn.execute("UPDATE sessions SET voted = TRUE WHERE voter_id = $1", voter_id)


class PostgresLedger(Ledger):
    """Async PostgreSQL ledger."""

    def __init__(
        self,
        dsn: str,
        min_size: int = 10,
        max_size: int = 20,
        lock_timeout: float = 5.0,
        command_timeout: float = 60,
    ):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.lock_timeout = lock_timeout
        self.command_timeout = command_timeout
        self.pool: Optional[asyncpg.Pool] = None

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a pooled connection; driver errors become StorageError."""
        if self.pool is None:
            raise StorageError("PostgreSQL pool is not initialized")
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except _DRIVER_ERRORS as e:
            logger.error(f"PostgreSQL error: {e}")
            raise StorageError(str(e)) from e

    async def initialize(self) -> None:
        """Initialize the connection pool and create the schema."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout
            )
            logger.info("PostgreSQL connection pool initialized successfully")
        except _DRIVER_ERRORS as e:
            logger.error(f"Failed to initialize PostgreSQL connection pool: {e}")
            raise StorageError(f"Connection pool creation failed: {e}") from e

        async with self._connection() as conn:
            await conn.execute(POSTGRES_SCHEMA)
            logger.info("PostgreSQL schema verified")

    async def close(self) -> None:
        """Close database connection pool."""
        try:
            if self.pool:
                await self.pool.close()
                logger.info("PostgreSQL connection pool closed successfully")
        except Exception as e:
            logger.error(f"Error closing PostgreSQL connection pool: {e}")

    async def check_health(self) -> bool:
        """Check PostgreSQL connection health."""
        try:
            async with self._connection() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except StorageError as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return False

    @asynccontextmanager
    async def vote_transaction(self) -> AsyncIterator[VoteTransaction]:
        """
        READ COMMITTED transaction; the voter row lock is taken by lock_voter.

        lock_timeout bounds how long a concurrent cast for the same voter
        waits for that row lock.
        """
        async with self._connection() as conn:
            async with conn.transaction(isolation="read_committed"):
                await conn.execute(
                    f"SET LOCAL lock_timeout = '{int(self.lock_timeout * 1000)}ms'"
                )
                yield PostgresVoteTransaction(conn)

    # Credential store

    async def get_user_by_email(self, email: str) -> Optional[User]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, full_name, email, password_hash, voted
                FROM users
                WHERE email = $1
                """,
                email
            )
        return User(**dict(row)) if row else None

    async def get_user(self, voter_id: int) -> Optional[User]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, full_name, email, password_hash, voted
                FROM users
                WHERE id = $1
                """,
                voter_id
            )
        return User(**dict(row)) if row else None

    async def create_user(self, full_name: str, email: str, password_hash: str) -> int:
        async with self._connection() as conn:
            try:
                return await conn.fetchval(
                    """
                    INSERT INTO users (full_name, email, password_hash)
                    VALUES ($1, $2, $3)
                    RETURNING id
                    """,
                    full_name, email, password_hash
                )
            except asyncpg.UniqueViolationError as e:
                if e.constraint_name == EMAIL_UNIQUE_CONSTRAINT:
                    raise DuplicateEmailError(f"Email already registered: {email}") from e
                raise

    # Candidates and vote records

    async def add_candidate(self, name: str, symbol: str) -> bool:
        async with self._connection() as conn:
            status = await conn.execute(
                """
                INSERT INTO candidates (name, symbol) VALUES ($1, $2)
                ON CONFLICT (name) DO NOTHING
                """,
                name, symbol
            )
        # Status tag is "INSERT 0 <rows>"
        return status.endswith(" 1")

    async def list_candidates(self) -> List[Candidate]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                "SELECT name, symbol, votes FROM candidates ORDER BY votes DESC, name"
            )
        return [Candidate(**dict(row)) for row in rows]

    async def count_vote_records(self, voter_id: Optional[int] = None) -> int:
        async with self._connection() as conn:
            if voter_id is None:
                return await conn.fetchval("SELECT COUNT(*) FROM votes")
            return await conn.fetchval(
                "SELECT COUNT(*) FROM votes WHERE voter_id = $1", voter_id
            )

    async def get_vote(self, voter_id: int) -> Optional[VoteReceipt]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT voter_id, candidate_name, cast_at FROM votes WHERE voter_id = $1",
                voter_id
            )
        return VoteReceipt(**dict(row)) if row else None

    # Sessions

    async def save_session(self, session: Session) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO sessions (token, voter_id, full_name, email, voted, expires_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                session.token, session.voter_id, session.full_name,
                session.email, session.voted, session.expires_at
            )

    async def load_session(self, token: str) -> Optional[Session]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT token, voter_id, full_name, email, voted, expires_at
                FROM sessions
                WHERE token = $1
                """,
                token
            )
        return Session(**dict(row)) if row else None

    async def delete_session(self, token: str) -> None:
        async with self._connection() as conn:
            await conn.execute("DELETE FROM sessions WHERE token = $1", token)

    async def purge_sessions(self, before: datetime) -> int:
        async with self._connection() as conn:
            status = await conn.execute("DELETE FROM sessions WHERE expires_at < $1", before)
        return int(status.split()[-1])
