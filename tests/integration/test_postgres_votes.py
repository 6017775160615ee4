"""Integration tests for vote casting on PostgreSQL.

Requires: PostgreSQL reachable at POSTGRES_TEST_DSN
"""

import asyncio

import pytest

from ballotbox.api.auth import Authenticator
from ballotbox.api.coordinator import VoteCoordinator
from ballotbox.api.results import ResultAggregator
from ballotbox.shared.models import LoginOutcome, Session, VoteOutcome
from ballotbox.storage import DuplicateEmailError


@pytest.mark.docker
@pytest.mark.asyncio
class TestPostgresVoteTransaction:
    """Exactly-once casting with SELECT ... FOR UPDATE."""

    async def test_concurrent_casts_same_voter(self, pg_ledger, make_pg_voter, postgres_client):
        """Test: ten concurrent casts for one voter, one is recorded.

        Flow:
        1. Build ten sessions for the same voter
        2. Cast them concurrently over the pool
        3. One ACCEPTED, nine ALREADY_VOTED, one vote row, counters sum to one
        """
        user = await make_pg_voter()
        coordinator = VoteCoordinator(pg_ledger, timeout=5.0)

        results = await asyncio.gather(*[
            coordinator.cast_vote(Session.from_user(user), "Green Party")
            for _ in range(10)
        ])

        outcomes = [r.outcome for r in results]
        assert outcomes.count(VoteOutcome.ACCEPTED) == 1
        assert outcomes.count(VoteOutcome.ALREADY_VOTED) == 9

        postgres_client.execute("SELECT COUNT(*) FROM votes WHERE voter_id = %s", (user.id,))
        assert postgres_client.fetchone()[0] == 1

        postgres_client.execute("SELECT COALESCE(SUM(votes), 0) FROM candidates")
        assert postgres_client.fetchone()[0] == 1

    async def test_no_lost_updates(self, pg_ledger, make_pg_voter, postgres_client):
        """Test: ten voters for one candidate move its counter by ten."""
        users = [await make_pg_voter() for _ in range(10)]
        coordinator = VoteCoordinator(pg_ledger, timeout=5.0)

        results = await asyncio.gather(*[
            coordinator.cast_vote(Session.from_user(u), "Labour Party") for u in users
        ])

        assert all(r.ok for r in results)
        postgres_client.execute("SELECT votes FROM candidates WHERE name = %s", ("Labour Party",))
        assert postgres_client.fetchone()[0] == 10
        postgres_client.execute("SELECT COUNT(*) FROM users WHERE voted")
        assert postgres_client.fetchone()[0] == 10

    async def test_existing_vote_record_blocks_cast(self, pg_ledger, make_pg_voter, postgres_client):
        """Test: the UNIQUE constraint on votes.voter_id rejects a second record."""
        user = await make_pg_voter()
        postgres_client.execute(
            "INSERT INTO votes (voter_id, candidate_name, cast_at) VALUES (%s, %s, NOW())",
            (user.id, "Green Party")
        )
        coordinator = VoteCoordinator(pg_ledger, timeout=5.0)

        result = await coordinator.cast_vote(Session.from_user(user), "Labour Party")

        assert result.outcome == VoteOutcome.ALREADY_VOTED
        postgres_client.execute("SELECT COALESCE(SUM(votes), 0) FROM candidates")
        assert postgres_client.fetchone()[0] == 0
        postgres_client.execute("SELECT voted FROM users WHERE id = %s", (user.id,))
        assert postgres_client.fetchone()[0] is False

    async def test_row_lock_timeout(self, postgres_dsn, pg_ledger, make_pg_voter, postgres_connection):
        """Test: a held voter row lock turns the cast into STORAGE_ERROR, then a retry works."""
        user = await make_pg_voter()
        coordinator = VoteCoordinator(pg_ledger, timeout=5.0)
        pg_ledger.lock_timeout = 0.3

        postgres_connection.autocommit = False
        blocker = postgres_connection.cursor()
        try:
            blocker.execute("SELECT voted FROM users WHERE id = %s FOR UPDATE", (user.id,))
            result = await coordinator.cast_vote(Session.from_user(user), "Green Party")
        finally:
            postgres_connection.rollback()
            blocker.close()
            postgres_connection.autocommit = True

        assert result.outcome == VoteOutcome.STORAGE_ERROR
        assert await pg_ledger.count_vote_records(user.id) == 0

        retry = await coordinator.cast_vote(Session.from_user(user), "Green Party")
        assert retry.ok

    async def test_results_and_login_after_vote(self, pg_ledger, make_pg_voter):
        users = [await make_pg_voter() for _ in range(3)]
        coordinator = VoteCoordinator(pg_ledger, timeout=5.0)
        for user, choice in zip(users, ["Liberal Party", "Liberal Party", "Green Party"]):
            assert (await coordinator.cast_vote(Session.from_user(user), choice)).ok

        result = await ResultAggregator(pg_ledger).compute_results()
        assert [(e.name, e.votes) for e in result.entries] == [
            ("Liberal Party", 2),
            ("Green Party", 1),
            ("Labour Party", 0),
        ]
        assert [e.percentage for e in result.entries] == [66.7, 33.3, 0.0]

        login = await Authenticator(pg_ledger).authenticate(users[0].email, users[0].full_name, "secret")
        assert login.outcome == LoginOutcome.ALREADY_VOTED

    async def test_duplicate_email(self, pg_ledger):
        await pg_ledger.create_user("A", "dup@example.org", "hash")

        with pytest.raises(DuplicateEmailError):
            await pg_ledger.create_user("B", "dup@example.org", "hash")
