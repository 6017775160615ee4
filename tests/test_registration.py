"""Tests for voter registration."""

import asyncio

import pytest

from ballotbox.api.auth import verify_password
from ballotbox.shared.models import LoginOutcome, RegistrationOutcome


@pytest.mark.asyncio
class TestRegistrar:
    """Registrar.register outcomes."""

    async def test_register_then_login(self, registrar, authenticator, ledger):
        result = await registrar.register("Grace Hopper", "Grace@Example.org", "cobol", "cobol")

        assert result.outcome == RegistrationOutcome.REGISTERED
        assert result.ok
        assert result.user_id is not None

        user = await ledger.get_user(result.user_id)
        assert user.email == "grace@example.org"
        assert user.voted is False
        assert user.password_hash != "cobol"
        assert verify_password("cobol", user.password_hash)

        login = await authenticator.authenticate("grace@example.org", "grace hopper", "cobol")
        assert login.outcome == LoginOutcome.SESSION_ESTABLISHED

    async def test_password_mismatch(self, registrar, ledger):
        result = await registrar.register("Grace Hopper", "grace@example.org", "cobol", "COBOL")

        assert result.outcome == RegistrationOutcome.PASSWORD_MISMATCH
        assert await ledger.get_user_by_email("grace@example.org") is None

    async def test_email_taken(self, registrar):
        first = await registrar.register("Grace Hopper", "grace@example.org", "cobol", "cobol")
        second = await registrar.register("Other Grace", "GRACE@example.org", "x", "x")

        assert first.ok
        assert second.outcome == RegistrationOutcome.EMAIL_TAKEN
        assert second.user_id is None

    async def test_concurrent_registrations_one_wins(self, registrar):
        results = await asyncio.gather(*[
            registrar.register(f"Grace {i}", "grace@example.org", "cobol", "cobol")
            for i in range(5)
        ])

        outcomes = [r.outcome for r in results]
        assert outcomes.count(RegistrationOutcome.REGISTERED) == 1
        assert outcomes.count(RegistrationOutcome.EMAIL_TAKEN) == 4

    @pytest.mark.parametrize("full_name,email,password", [
        ("", "grace@example.org", "cobol"),
        ("   ", "grace@example.org", "cobol"),
        ("Grace Hopper", "", "cobol"),
        ("Grace Hopper", "grace@example.org", ""),
    ])
    async def test_blank_fields(self, registrar, full_name, email, password):
        result = await registrar.register(full_name, email, password, password)

        assert result.outcome == RegistrationOutcome.INVALID_INPUT

    async def test_password_too_long(self, registrar):
        password = "x" * 73

        result = await registrar.register("Grace Hopper", "grace@example.org", password, password)

        assert result.outcome == RegistrationOutcome.INVALID_INPUT
