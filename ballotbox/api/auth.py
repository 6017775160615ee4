"""
Authentication and sessions.

Login needs three matching factors: email, full name (case-insensitive) and
password. Sessions are persisted in the store so that any server process can
resolve a token; the voted flag they carry is advisory.
"""
import asyncio
import logging
import secrets
from datetime import timedelta
from typing import Optional

import bcrypt

from ballotbox.shared.models import (
    LoginOutcome,
    LoginResult,
    Session,
    names_match,
    normalize_email,
    utc_now,
)
from ballotbox.storage import Ledger

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of a password
BCRYPT_MAX_PASSWORD_BYTES = 72


def hash_password(password: str, rounds: int = 12) -> str:
    """Salted bcrypt hash of a password."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time check of a password against a bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash, or a password over the 72-byte limit
        return False


class Authenticator:
    """Resolves a login attempt to a Session. Read-only against the store."""

    def __init__(self, ledger: Ledger):
        self.ledger = ledger

    async def authenticate(self, email: str, full_name: str, password: str) -> LoginResult:
        """
        Authenticate a voter.

        Args:
            email: Registered email (case-insensitive)
            full_name: Claimed full name, must match the stored one ignoring case
            password: Plain password

        Returns:
            LoginResult: SESSION_ESTABLISHED with a session, ALREADY_VOTED with
            the resolved identity, or a rejection without session

        Raises:
            StorageError: If the credential store cannot be read
        """
        user = await self.ledger.get_user_by_email(normalize_email(email))
        if user is None:
            logger.info("Login rejected: unknown email")
            return LoginResult(outcome=LoginOutcome.NOT_FOUND)

        if not names_match(full_name, user.full_name):
            logger.info(f"Login rejected for voter {user.id}: identity mismatch")
            return LoginResult(outcome=LoginOutcome.IDENTITY_MISMATCH)

        # bcrypt is CPU bound, keep it off the event loop
        password_ok = await asyncio.to_thread(verify_password, password, user.password_hash)
        if not password_ok:
            logger.info(f"Login rejected for voter {user.id}: bad credential")
            return LoginResult(outcome=LoginOutcome.BAD_CREDENTIAL)

        session = Session.from_user(user)
        if user.voted:
            logger.info(f"Login refused for voter {user.id}: already voted")
            return LoginResult(outcome=LoginOutcome.ALREADY_VOTED, session=session)

        logger.info(f"Voter {user.id} authenticated")
        return LoginResult(outcome=LoginOutcome.SESSION_ESTABLISHED, session=session)


class SessionRegistry:
    """Issues, resolves and revokes session tokens."""

    def __init__(self, ledger: Ledger, ttl_minutes: int = 30):
        self.ledger = ledger
        self.ttl = timedelta(minutes=ttl_minutes)

    async def issue(self, session: Session) -> str:
        """
        Persist a session and return its token.

        Raises:
            ValueError: If the session belongs to a voter who already voted
        """
        if session.voted:
            raise ValueError("Sessions are only issued to voters who have not voted")

        now = utc_now()
        purged = await self.ledger.purge_sessions(now)
        if purged:
            logger.debug(f"Purged {purged} expired sessions")

        session.token = secrets.token_urlsafe(32)
        session.expires_at = now + self.ttl
        await self.ledger.save_session(session)
        return session.token

    async def resolve(self, token: Optional[str]) -> Optional[Session]:
        """Session for a token, or None when unknown or expired."""
        if not token:
            return None

        session = await self.ledger.load_session(token)
        if session is None:
            return None

        if session.expires_at is not None and session.expires_at <= utc_now():
            await self.ledger.delete_session(token)
            return None

        return session

    async def revoke(self, token: str) -> None:
        await self.ledger.delete_session(token)
