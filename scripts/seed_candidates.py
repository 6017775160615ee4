#!/usr/bin/env python3
"""
Load the candidate list into the ballot box store.

Seeding is idempotent: candidates that already exist keep their name, symbol
and vote counter.

Usage:
    python seed_candidates.py [--database-url URL] [NAME=SYMBOL ...]
    python seed_candidates.py --file candidates.json

Environment Variables:
    DATABASE_URL: Store URL (postgresql://... or sqlite:///...)
    POSTGRES_HOST / POSTGRES_PORT / POSTGRES_DB / POSTGRES_USER / POSTGRES_PASSWORD:
        Used when DATABASE_URL is unset
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import List, Tuple

from dotenv import load_dotenv

from ballotbox.storage import StorageError, create_ledger

load_dotenv()

DEFAULT_CANDIDATES = [
    ("Green Party", "img/green.png"),
    ("Labour Party", "img/labour.png"),
    ("Liberal Party", "img/liberal.png"),
    ("Independent", "img/independent.png"),
]


def default_database_url() -> str:
    """DATABASE_URL, or a PostgreSQL DSN built from the POSTGRES_* variables."""
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    return (
        f"postgresql://{os.getenv('POSTGRES_USER', 'ballot_user')}:"
        f"{os.getenv('POSTGRES_PASSWORD', 'ballot_pass')}@"
        f"{os.getenv('POSTGRES_HOST', 'localhost')}:{os.getenv('POSTGRES_PORT', '5432')}/"
        f"{os.getenv('POSTGRES_DB', 'voting_system')}"
    )


def parse_pair(value: str) -> Tuple[str, str]:
    """Parse NAME=SYMBOL."""
    name, sep, symbol = value.partition("=")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"Expected NAME=SYMBOL, got {value!r}")
    return name.strip(), symbol.strip()


def read_candidate_file(path: Path) -> List[Tuple[str, str]]:
    """
    Read candidates from a JSON file.

    Format: [{"name": "...", "symbol": "..."}, ...]
    """
    with open(path, "r") as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON list of candidates")

    candidates = []
    for entry in data:
        if not isinstance(entry, dict) or not entry.get("name"):
            raise ValueError(f"{path}: every candidate needs a name")
        candidates.append((entry["name"].strip(), entry.get("symbol", "")))
    return candidates


async def seed(database_url: str, candidates: List[Tuple[str, str]]) -> int:
    """
    Insert candidates that do not exist yet.

    Returns:
        int: Number of candidates added
    """
    ledger = create_ledger(database_url, pool_min_size=1, pool_max_size=2)
    await ledger.initialize()

    added = 0
    try:
        for name, symbol in candidates:
            if await ledger.add_candidate(name, symbol):
                print(f"✓ Added {name}")
                added += 1
            else:
                print(f"- {name} already present")
    finally:
        await ledger.close()

    return added


def main():
    parser = argparse.ArgumentParser(description="Seed ballot box candidates")
    parser.add_argument(
        "candidates",
        nargs="*",
        type=parse_pair,
        help="Candidates as NAME=SYMBOL (default: built-in list)"
    )
    parser.add_argument("--file", type=Path, help="JSON file with candidates")
    parser.add_argument("--database-url", default=default_database_url(), help="Store URL")
    args = parser.parse_args()

    if args.file:
        candidates = read_candidate_file(args.file)
    else:
        candidates = args.candidates or DEFAULT_CANDIDATES

    try:
        added = asyncio.run(seed(args.database_url, candidates))
    except StorageError as e:
        print(f"✗ Store error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"\nDone: {added} added, {len(candidates) - added} already present")


if __name__ == "__main__":
    main()
