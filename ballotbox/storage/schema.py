"""Table definitions for both storage engines.

votes.voter_id is UNIQUE: the constraint is the structural backstop behind
the locked voted-flag check.
"""

VOTE_UNIQUE_CONSTRAINT = "votes_voter_id_key"
EMAIL_UNIQUE_CONSTRAINT = "users_email_key"

POSTGRES_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id            SERIAL PRIMARY KEY,
    full_name     TEXT NOT NULL,
    email         TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    voted         BOOLEAN NOT NULL DEFAULT FALSE,
    CONSTRAINT users_email_key UNIQUE (email)
);

CREATE TABLE IF NOT EXISTS candidates (
    name    TEXT PRIMARY KEY,
    symbol  TEXT NOT NULL DEFAULT '',
    votes   INTEGER NOT NULL DEFAULT 0 CHECK (votes >= 0)
);

CREATE TABLE IF NOT EXISTS votes (
    id              BIGSERIAL PRIMARY KEY,
    voter_id        INTEGER NOT NULL REFERENCES users(id),
    candidate_name  TEXT NOT NULL REFERENCES candidates(name),
    cast_at         TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT votes_voter_id_key UNIQUE (voter_id)
);

CREATE TABLE IF NOT EXISTS sessions (
    token       TEXT PRIMARY KEY,
    voter_id    INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    full_name   TEXT NOT NULL,
    email       TEXT NOT NULL,
    voted       BOOLEAN NOT NULL DEFAULT FALSE,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    expires_at  TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_voter ON sessions(voter_id);
CREATE INDEX IF NOT EXISTS idx_sessions_expires ON sessions(expires_at);
"""

SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    full_name     TEXT NOT NULL,
    email         TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    voted         INTEGER NOT NULL DEFAULT 0 CHECK (voted IN (0, 1))
);

CREATE TABLE IF NOT EXISTS candidates (
    name    TEXT PRIMARY KEY,
    symbol  TEXT NOT NULL DEFAULT '',
    votes   INTEGER NOT NULL DEFAULT 0 CHECK (votes >= 0)
);

CREATE TABLE IF NOT EXISTS votes (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    voter_id        INTEGER NOT NULL UNIQUE REFERENCES users(id),
    candidate_name  TEXT NOT NULL REFERENCES candidates(name),
    cast_at         TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
    token       TEXT PRIMARY KEY,
    voter_id    INTEGER NOT NULL REFERENCES users(id),
    full_name   TEXT NOT NULL,
    email       TEXT NOT NULL,
    voted       INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT NOT NULL,
    expires_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_voter ON sessions(voter_id);
"""
