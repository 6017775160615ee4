"""Tests for session token issue, resolution and revocation."""

from datetime import timedelta

import pytest

from ballotbox.shared.models import utc_now


@pytest.mark.asyncio
class TestSessionRegistry:
    """SessionRegistry against the SQLite store."""

    async def test_issue_and_resolve(self, session_registry, make_voter):
        voter = await make_voter()
        session = voter.session

        token = await session_registry.issue(session)

        assert token
        assert session.token == token
        assert session.expires_at > utc_now()

        resolved = await session_registry.resolve(token)
        assert resolved is not None
        assert resolved.voter_id == voter.user.id
        assert resolved.email == voter.user.email
        assert resolved.voted is False

    async def test_tokens_are_unique(self, session_registry, make_voter):
        voter = await make_voter()

        first = await session_registry.issue(voter.session)
        second = await session_registry.issue(voter.session)

        assert first != second

    async def test_unknown_and_empty_tokens(self, session_registry):
        assert await session_registry.resolve("no-such-token") is None
        assert await session_registry.resolve("") is None
        assert await session_registry.resolve(None) is None

    async def test_revoke(self, session_registry, make_voter):
        voter = await make_voter()
        token = await session_registry.issue(voter.session)

        await session_registry.revoke(token)

        assert await session_registry.resolve(token) is None

    async def test_expired_session_is_dropped(self, session_registry, ledger, make_voter):
        voter = await make_voter()
        session = voter.session
        token = await session_registry.issue(session)

        # Rewrite the stored expiry into the past
        await ledger.delete_session(token)
        session.expires_at = utc_now() - timedelta(seconds=1)
        await ledger.save_session(session)

        assert await session_registry.resolve(token) is None
        assert await ledger.load_session(token) is None

    async def test_expired_sessions_purged_on_issue(self, session_registry, ledger, make_voter):
        voter = await make_voter()
        stale = voter.session
        stale.token = "stale-token"
        stale.expires_at = utc_now() - timedelta(minutes=5)
        await ledger.save_session(stale)

        await session_registry.issue(voter.session)

        assert await ledger.load_session("stale-token") is None

    async def test_refuses_voted_session(self, session_registry, make_voter):
        voter = await make_voter()
        session = voter.session
        session.voted = True

        with pytest.raises(ValueError):
            await session_registry.issue(session)

    async def test_vote_marks_stored_session(self, session_registry, coordinator, make_voter):
        """Test: after a vote every stored session of the voter reports voted."""
        voter = await make_voter()
        token = await session_registry.issue(voter.session)

        session = await session_registry.resolve(token)
        result = await coordinator.cast_vote(session, "Labour Party")
        assert result.ok

        resolved = await session_registry.resolve(token)
        assert resolved.voted is True
