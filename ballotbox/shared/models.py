"""
Shared data models for the ballot box service.

This module contains:
- Session: explicit identity value passed to every voting operation
- Outcome enums for login, registration and vote casting
- Result dataclasses returned by the core operations
- Ranked result types produced by the aggregator
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any


class LoginOutcome(str, Enum):
    """Possible outcomes of an authentication attempt."""
    SESSION_ESTABLISHED = "session_established"
    NOT_FOUND = "not_found"
    IDENTITY_MISMATCH = "identity_mismatch"
    BAD_CREDENTIAL = "bad_credential"
    ALREADY_VOTED = "already_voted"


class VoteOutcome(str, Enum):
    """Possible outcomes of a vote cast."""
    ACCEPTED = "vote_accepted"
    ALREADY_VOTED = "already_voted"
    UNKNOWN_CANDIDATE = "unknown_candidate"
    MISSING_CANDIDATE = "missing_candidate"
    UNAUTHENTICATED = "unauthenticated"
    STORAGE_ERROR = "storage_error"


class RegistrationOutcome(str, Enum):
    """Possible outcomes of a registration."""
    REGISTERED = "registered"
    PASSWORD_MISMATCH = "password_mismatch"
    EMAIL_TAKEN = "email_taken"
    INVALID_INPUT = "invalid_input"


@dataclass
class User:
    """A row of the credential store."""
    id: int
    full_name: str
    email: str
    password_hash: str
    voted: bool = False


@dataclass
class Candidate:
    """A candidate and its running vote counter."""
    name: str
    symbol: str
    votes: int = 0


@dataclass
class Session:
    """
    Proof of a successful authentication.

    Attributes:
        voter_id: Id of the authenticated user
        full_name: Stored full name of the user
        email: Stored email of the user
        voted: Voted flag observed when the session was built. Advisory only,
            the coordinator always re-reads the store.
        token: Opaque token once the session has been issued
        expires_at: Expiry of the issued token
    """
    voter_id: int
    full_name: str
    email: str
    voted: bool = False
    token: Optional[str] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> 'Session':
        """Snapshot a user row into a session."""
        return cls(
            voter_id=user.id,
            full_name=user.full_name,
            email=user.email,
            voted=user.voted,
        )


@dataclass
class LoginResult:
    """Result of Authenticator.authenticate."""
    outcome: LoginOutcome
    session: Optional[Session] = None

    @property
    def ok(self) -> bool:
        return self.outcome == LoginOutcome.SESSION_ESTABLISHED


@dataclass
class RegistrationResult:
    """Result of Registrar.register."""
    outcome: RegistrationOutcome
    user_id: Optional[int] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == RegistrationOutcome.REGISTERED


@dataclass
class VoteReceipt:
    """Proof that a vote was committed."""
    voter_id: int
    candidate_name: str
    cast_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["cast_at"] = self.cast_at.isoformat()
        return data


@dataclass
class CastResult:
    """Result of VoteCoordinator.cast_vote."""
    outcome: VoteOutcome
    receipt: Optional[VoteReceipt] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == VoteOutcome.ACCEPTED


@dataclass
class ResultEntry:
    """One line of the ranked result."""
    name: str
    symbol: str
    votes: int
    percentage: float


@dataclass
class RankedResult:
    """
    Candidates ordered by votes (descending) then name (ascending).

    When no vote has been cast every percentage is 0.0 and has_votes is False.
    """
    entries: List[ResultEntry] = field(default_factory=list)
    total_votes: int = 0

    @property
    def has_votes(self) -> bool:
        return self.total_votes > 0

    @property
    def winner(self) -> Optional[ResultEntry]:
        """Leading candidate, or None when nothing has been cast."""
        if not self.has_votes or not self.entries:
            return None
        return self.entries[0]

    def podium(self, size: int = 3) -> List[ResultEntry]:
        """Top entries for display; empty when no votes exist."""
        if not self.has_votes:
            return []
        return self.entries[:size]


def utc_now() -> datetime:
    """Current timezone-aware UTC time."""
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    """Emails are unique case-insensitively."""
    return (email or "").strip().lower()


def names_match(claimed: str, stored: str) -> bool:
    """
    Case-insensitive exact comparison of two full names.

    Only surrounding whitespace of the claimed name is ignored; any other
    character difference is a mismatch.
    """
    return (claimed or "").strip().lower() == (stored or "").lower()
