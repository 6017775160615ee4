"""Ranked, percentage-annotated election results."""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List

from ballotbox.shared.models import Candidate, RankedResult, ResultEntry
from ballotbox.storage import Ledger

logger = logging.getLogger(__name__)

ONE_DECIMAL = Decimal("0.1")


def percentage(votes: int, total_votes: int) -> float:
    """Share of the total, rounded half-up to one decimal. 0.0 when nothing was cast."""
    if total_votes <= 0:
        return 0.0
    share = Decimal(votes) * 100 / Decimal(total_votes)
    return float(share.quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP))


def rank_candidates(candidates: List[Candidate]) -> RankedResult:
    """
    Order candidates by votes descending, ties broken by name ascending.

    No truncation is applied; display layers pick what they need
    (see RankedResult.podium).
    """
    total_votes = sum(c.votes for c in candidates)
    ordered = sorted(candidates, key=lambda c: (-c.votes, c.name))

    return RankedResult(
        entries=[
            ResultEntry(
                name=c.name,
                symbol=c.symbol,
                votes=c.votes,
                percentage=percentage(c.votes, total_votes)
            )
            for c in ordered
        ],
        total_votes=total_votes
    )


class ResultAggregator:
    """Read-only view over the candidate counters."""

    def __init__(self, ledger: Ledger):
        self.ledger = ledger

    async def compute_results(self) -> RankedResult:
        """
        Read every candidate counter and rank them.

        Raises:
            StorageError: If the store cannot be read
        """
        candidates = await self.ledger.list_candidates()
        result = rank_candidates(candidates)

        if not result.has_votes:
            logger.debug("No votes cast yet")
        return result
