"""Voter registration."""
import asyncio
import logging

from ballotbox.shared.models import RegistrationOutcome, RegistrationResult, normalize_email
from ballotbox.storage import DuplicateEmailError, Ledger

from .auth import BCRYPT_MAX_PASSWORD_BYTES, hash_password

logger = logging.getLogger(__name__)


class Registrar:
    """Creates users in the credential store."""

    def __init__(self, ledger: Ledger, bcrypt_rounds: int = 12):
        self.ledger = ledger
        self.bcrypt_rounds = bcrypt_rounds

    async def register(
        self,
        full_name: str,
        email: str,
        password: str,
        confirm: str
    ) -> RegistrationResult:
        """
        Register a voter who has not voted yet.

        Email uniqueness is decided by the store's UNIQUE constraint, so two
        concurrent registrations for one address cannot both succeed.

        Raises:
            StorageError: If the store cannot be written
        """
        full_name = (full_name or "").strip()
        email = normalize_email(email)

        if not full_name or not email or not password:
            return RegistrationResult(
                outcome=RegistrationOutcome.INVALID_INPUT,
                message="Full name, email and password are required"
            )

        if len(password.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
            return RegistrationResult(
                outcome=RegistrationOutcome.INVALID_INPUT,
                message=f"Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes"
            )

        if password != confirm:
            return RegistrationResult(
                outcome=RegistrationOutcome.PASSWORD_MISMATCH,
                message="Passwords do not match"
            )

        password_hash = await asyncio.to_thread(hash_password, password, self.bcrypt_rounds)

        try:
            user_id = await self.ledger.create_user(full_name, email, password_hash)
        except DuplicateEmailError:
            logger.info("Registration rejected: email already registered")
            return RegistrationResult(
                outcome=RegistrationOutcome.EMAIL_TAKEN,
                message="Email already registered"
            )

        logger.info(f"Registered voter {user_id}")
        return RegistrationResult(
            outcome=RegistrationOutcome.REGISTERED,
            user_id=user_id,
            message="Registration successful"
        )
