"""
Vote transaction coordinator.

A cast is one store transaction made of four steps:

1. Re-read the voter's voted flag under an exclusive lock. The flag cached
   in the session is never trusted for this decision.
2. Check that the candidate name is non-empty and exists.
3. Insert the vote record. votes.voter_id is UNIQUE, so a record that slipped
   past step 1 is still rejected.
4. Increment the candidate counter in SQL and set the voted flag.

All steps commit together or not at all. Rejections are raised inside the
transaction so the store rolls back whatever was already applied.

A timeout may fire after the commit reached the store; such an attempt is
settled from the voter's vote record before an outcome is reported.
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional

from ballotbox.shared.models import CastResult, Session, VoteOutcome, VoteReceipt, utc_now
from ballotbox.storage import DuplicateVoteError, Ledger, StorageError

logger = logging.getLogger(__name__)


class VoteRejected(Exception):
    """Aborts the vote transaction with a caller-visible outcome."""

    def __init__(self, outcome: VoteOutcome, detail: str):
        super().__init__(detail)
        self.outcome = outcome
        self.detail = detail


def _log_abandoned_attempt(attempt: asyncio.Future) -> None:
    """Report how a cast ended after its caller went away."""
    if attempt.cancelled():
        return
    error = attempt.exception()
    if error is None:
        logger.info("Abandoned vote cast committed")
    elif isinstance(error, VoteRejected):
        logger.info(f"Abandoned vote cast rejected: {error.outcome.value}")
    else:
        logger.warning(f"Abandoned vote cast failed: {error!r}")


class VoteCoordinator:
    """Records each eligible voter's choice exactly once."""

    def __init__(self, ledger: Ledger, timeout: float = 5.0):
        """
        Args:
            ledger: Transactional store
            timeout: Upper bound in seconds for one cast attempt
        """
        self.ledger = ledger
        self.timeout = timeout

    async def cast_vote(self, session: Optional[Session], candidate_name: Optional[str]) -> CastResult:
        """
        Cast a vote for the session's voter.

        Once the transaction has started it is not cancellable: if the caller
        is cancelled the attempt keeps running until it commits, is rejected
        or times out.

        A timeout can fire after the store already committed, so a timed-out
        attempt is settled by reading the voter's vote record back.

        Args:
            session: Authenticated session, None when the token was not resolved
            candidate_name: Name of the chosen candidate

        Returns:
            CastResult: ACCEPTED with a receipt, or the rejection outcome.
            STORAGE_ERROR is the only outcome worth retrying, and nothing
            was applied when it is returned.
        """
        if session is None:
            return self._rejected(VoteOutcome.UNAUTHENTICATED, "No valid session")

        if session.voted:
            # A session that has voted must re-authenticate, which will be refused
            return self._rejected(
                VoteOutcome.ALREADY_VOTED,
                f"Voter {session.voter_id} already voted"
            )

        candidate = (candidate_name or "").strip()
        cast_at = utc_now()

        attempt = asyncio.ensure_future(
            asyncio.wait_for(
                self._cast_in_transaction(session.voter_id, candidate, cast_at),
                timeout=self.timeout
            )
        )

        try:
            receipt = await asyncio.shield(attempt)
        except asyncio.CancelledError:
            attempt.add_done_callback(_log_abandoned_attempt)
            raise
        except VoteRejected as rejection:
            return self._rejected(rejection.outcome, rejection.detail)
        except asyncio.TimeoutError:
            return await self._settle_timeout(session, candidate, cast_at)
        except StorageError as e:
            logger.error(f"Vote cast for voter {session.voter_id} failed, rolled back: {e}")
            return CastResult(
                outcome=VoteOutcome.STORAGE_ERROR,
                detail="Vote could not be recorded, please retry"
            )

        return self._accepted(session, receipt)

    async def _settle_timeout(self, session: Session, candidate: str, cast_at: datetime) -> CastResult:
        """Decide a timed-out attempt from the committed vote record, if any."""
        try:
            recorded = await self.ledger.get_vote(session.voter_id)
        except StorageError as e:
            logger.error(
                f"Vote cast for voter {session.voter_id} timed out and could not be verified: {e}"
            )
            return CastResult(
                outcome=VoteOutcome.STORAGE_ERROR,
                detail="Vote could not be recorded in time, please retry"
            )

        if recorded is None:
            logger.error(
                f"Vote cast for voter {session.voter_id} timed out after {self.timeout}s, rolled back"
            )
            return CastResult(
                outcome=VoteOutcome.STORAGE_ERROR,
                detail="Vote could not be recorded in time, please retry"
            )

        session.voted = True
        if recorded.cast_at == cast_at and recorded.candidate_name == candidate:
            logger.warning(
                f"Vote cast for voter {session.voter_id} committed, acknowledged after {self.timeout}s"
            )
            return self._accepted(session, recorded)

        # Another attempt for the same voter committed first
        return self._rejected(
            VoteOutcome.ALREADY_VOTED,
            f"Voter {session.voter_id} already voted"
        )

    async def _cast_in_transaction(self, voter_id: int, candidate: str, cast_at: datetime) -> VoteReceipt:
        async with self.ledger.vote_transaction() as tx:
            voted = await tx.lock_voter(voter_id)
            if voted is None:
                raise VoteRejected(VoteOutcome.UNAUTHENTICATED, f"Voter {voter_id} does not exist")
            if voted:
                raise VoteRejected(VoteOutcome.ALREADY_VOTED, f"Voter {voter_id} already voted")

            if not candidate:
                raise VoteRejected(VoteOutcome.MISSING_CANDIDATE, "Please select a candidate")
            if not await tx.candidate_exists(candidate):
                raise VoteRejected(
                    VoteOutcome.UNKNOWN_CANDIDATE,
                    f"Candidate {candidate!r} does not exist"
                )

            try:
                await tx.insert_vote(voter_id, candidate, cast_at)
            except DuplicateVoteError as e:
                raise VoteRejected(
                    VoteOutcome.ALREADY_VOTED,
                    f"Voter {voter_id} already has a vote record"
                ) from e

            await tx.increment_candidate(candidate)
            await tx.mark_voted(voter_id)

        return VoteReceipt(voter_id=voter_id, candidate_name=candidate, cast_at=cast_at)

    @staticmethod
    def _accepted(session: Session, receipt: VoteReceipt) -> CastResult:
        session.voted = True
        logger.info(f"Vote accepted: voter={receipt.voter_id}, candidate={receipt.candidate_name}")
        return CastResult(outcome=VoteOutcome.ACCEPTED, receipt=receipt, detail="Vote recorded")

    @staticmethod
    def _rejected(outcome: VoteOutcome, detail: str) -> CastResult:
        logger.info(f"Vote rejected: {outcome.value} ({detail})")
        return CastResult(outcome=outcome, detail=detail)
