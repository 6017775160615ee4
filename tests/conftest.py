"""Pytest fixtures for the ballot box test-suite.

Every test gets its own SQLite database in a temporary directory, seeded with
three candidates. Connections are opened per unit of work, so concurrent
tasks contend for the store the way separate server processes would.
"""

import os
from dataclasses import dataclass
from typing import AsyncGenerator, Awaitable, Callable, List

import httpx
import pytest

from ballotbox.api.auth import Authenticator, SessionRegistry, hash_password
from ballotbox.api.coordinator import VoteCoordinator
from ballotbox.api.registration import Registrar
from ballotbox.api.results import ResultAggregator
from ballotbox.shared.models import Session, User
from ballotbox.storage import SqliteLedger

# Cheap hashes keep the suite fast; production uses BCRYPT_ROUNDS
TEST_BCRYPT_ROUNDS = 4

CANDIDATES = [
    ("Green Party", "img/green.png"),
    ("Labour Party", "img/labour.png"),
    ("Liberal Party", "img/liberal.png"),
]

DEFAULT_PASSWORD = "correct horse battery"


@dataclass
class Voter:
    """A registered voter together with the plain password used to create it."""
    user: User
    password: str

    @property
    def session(self) -> Session:
        return Session.from_user(self.user)


@pytest.fixture
def db_path(tmp_path) -> str:
    """Path of a fresh SQLite database file."""
    return os.path.join(str(tmp_path), "ballotbox.db")


@pytest.fixture
async def ledger(db_path: str) -> AsyncGenerator[SqliteLedger, None]:
    """Initialized SQLite ledger with the default candidates."""
    store = SqliteLedger(db_path, busy_timeout=5.0)
    await store.initialize()
    for name, symbol in CANDIDATES:
        await store.add_candidate(name, symbol)

    yield store

    await store.close()


@pytest.fixture
def make_voter(ledger: SqliteLedger) -> Callable[..., Awaitable[Voter]]:
    """Factory registering a voter directly in the store.

    Returns a coroutine function taking full_name, email and password.
    """
    counter = {"n": 0}

    async def _make(
        full_name: str = None,
        email: str = None,
        password: str = DEFAULT_PASSWORD
    ) -> Voter:
        counter["n"] += 1
        full_name = full_name or f"Voter Number{counter['n']}"
        email = email or f"voter{counter['n']}@example.org"

        user_id = await ledger.create_user(
            full_name, email, hash_password(password, rounds=TEST_BCRYPT_ROUNDS)
        )
        user = await ledger.get_user(user_id)
        return Voter(user=user, password=password)

    return _make


@pytest.fixture
async def voters(make_voter) -> List[Voter]:
    """Ten registered voters who have not voted."""
    return [await make_voter() for _ in range(10)]


@pytest.fixture
def authenticator(ledger: SqliteLedger) -> Authenticator:
    return Authenticator(ledger)


@pytest.fixture
def session_registry(ledger: SqliteLedger) -> SessionRegistry:
    return SessionRegistry(ledger, ttl_minutes=30)


@pytest.fixture
def coordinator(ledger: SqliteLedger) -> VoteCoordinator:
    return VoteCoordinator(ledger, timeout=5.0)


@pytest.fixture
def aggregator(ledger: SqliteLedger) -> ResultAggregator:
    return ResultAggregator(ledger)


@pytest.fixture
def registrar(ledger: SqliteLedger) -> Registrar:
    return Registrar(ledger, bcrypt_rounds=TEST_BCRYPT_ROUNDS)


@pytest.fixture
def counters(ledger: SqliteLedger) -> Callable[[], Awaitable[dict]]:
    """Helper returning the current {candidate: votes} mapping."""
    async def _read() -> dict:
        return {c.name: c.votes for c in await ledger.list_candidates()}

    return _read


@pytest.fixture
async def api_client(db_path: str, monkeypatch) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client bound to the FastAPI app running on a temp SQLite store.

    The app lifespan is entered explicitly since ASGITransport does not run it.
    """
    from ballotbox.api import main
    from ballotbox.api.config import settings

    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setattr(settings, "BCRYPT_ROUNDS", TEST_BCRYPT_ROUNDS)
    monkeypatch.setattr(main.limiter, "enabled", False)

    async with main.lifespan(main.app):
        for name, symbol in CANDIDATES:
            await main.ledger.add_candidate(name, symbol)

        transport = httpx.ASGITransport(app=main.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers",
        "docker: mark test as requiring a running PostgreSQL server"
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow running"
    )
