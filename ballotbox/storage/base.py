"""
Storage contract shared by the PostgreSQL and SQLite engines.

The ledger owns four tables: users (credential store), candidates (vote
counters), votes (append-only records, one per voter) and sessions.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncIterator, List, Optional

from ballotbox.shared.models import Candidate, Session, User, VoteReceipt


class StorageError(Exception):
    """Transient store failure (connection, lock timeout, conflict)."""
    pass


class IntegrityViolation(Exception):
    """A uniqueness constraint rejected a write."""
    pass


class DuplicateVoteError(IntegrityViolation):
    """A vote record already exists for this voter."""
    pass


class DuplicateEmailError(IntegrityViolation):
    """A user with this email is already registered."""
    pass


class VoteTransaction(ABC):
    """Operations available inside the vote transaction."""

    @abstractmethod
    async def lock_voter(self, voter_id: int) -> Optional[bool]:
        """
        Read the voter's voted flag while holding an exclusive lock.

        Returns:
            The flag, or None when no such user exists
        """

    @abstractmethod
    async def candidate_exists(self, name: str) -> bool:
        ...

    @abstractmethod
    async def insert_vote(self, voter_id: int, candidate_name: str, cast_at: datetime) -> None:
        """
        Append a vote record.

        Raises:
            DuplicateVoteError: If a record for this voter already exists
        """

    @abstractmethod
    async def increment_candidate(self, name: str) -> None:
        """Add one to the candidate counter in a single statement."""

    @abstractmethod
    async def mark_voted(self, voter_id: int) -> None:
        """Set the user's voted flag and the cached flag of all their sessions."""


class Ledger(ABC):
    """Connection abstraction over the transactional store."""

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections and create the schema if missing."""

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def check_health(self) -> bool:
        ...

    @abstractmethod
    def vote_transaction(self) -> AsyncIterator[VoteTransaction]:
        """
        Async context manager around one vote transaction.

        Commits when the block exits normally and rolls back on any
        exception, which is then re-raised.
        """

    # Credential store

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[User]:
        ...

    @abstractmethod
    async def get_user(self, voter_id: int) -> Optional[User]:
        """Inspection helper for scripts and tests; login goes through get_user_by_email."""

    @abstractmethod
    async def create_user(self, full_name: str, email: str, password_hash: str) -> int:
        """
        Insert a user and return its id.

        Raises:
            DuplicateEmailError: If the email is taken
        """

    # Candidates and vote records

    @abstractmethod
    async def add_candidate(self, name: str, symbol: str) -> bool:
        """Insert a candidate with zero votes. Returns False if it already exists."""

    @abstractmethod
    async def list_candidates(self) -> List[Candidate]:
        ...

    @abstractmethod
    async def count_vote_records(self, voter_id: Optional[int] = None) -> int:
        """
        Number of vote records, for one voter or in total.

        Inspection helper: the sum of candidate counters must always equal the
        total, and a voter has at most one record.
        """

    @abstractmethod
    async def get_vote(self, voter_id: int) -> Optional[VoteReceipt]:
        """The committed vote record of a voter, or None."""

    # Sessions

    @abstractmethod
    async def save_session(self, session: Session) -> None:
        ...

    @abstractmethod
    async def load_session(self, token: str) -> Optional[Session]:
        ...

    @abstractmethod
    async def delete_session(self, token: str) -> None:
        ...

    @abstractmethod
    async def purge_sessions(self, before: datetime) -> int:
        """Delete sessions that expired before the given instant."""
