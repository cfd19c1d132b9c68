"""
Turn arbiter (pending-reply lock).

Guarantees that at most one request is current per arbiter. Every request
gets a ticket; a cancelled ticket stays outstanding until its late result
arrives, at which point the result is dropped instead of being surfaced.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import UUID, uuid4

from interview_conductor.errors import PendingReplyConflictError, ProtocolDesyncError
from interview_conductor.orchestrator.schemas import PendingReason, PendingReply, StageState

logger = logging.getLogger(__name__)


@dataclass
class ReplyTicket:
    """Cancellable handle for one outstanding request."""

    reason: PendingReason
    stage_snapshot: StageState
    ticket_id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    obsolete: bool = False

    @property
    def discard_marker(self) -> str:
        """Log marker used when this ticket's result is dropped."""
        return f"{self.reason.value}_discarded"


@dataclass(frozen=True)
class Claim:
    """Result of matching an incoming result to its ticket."""

    ticket: ReplyTicket
    discarded: bool


class TurnArbiter:
    """
    Single-pending-request lock with explicit cancel/discard.

    Callers must cancel the current request before starting another one.
    Results are matched to tickets by id, or in request order when the
    transport does not tag them.
    """

    def __init__(self, name: str = "reply") -> None:
        """
        Initialize the arbiter.

        Args:
            name: Label used in log lines.
        """
        self._name = name
        self._current: ReplyTicket | None = None
        self._outstanding: deque[ReplyTicket] = deque()

    @property
    def name(self) -> str:
        """Get the arbiter label."""
        return self._name

    @property
    def current(self) -> ReplyTicket | None:
        """Get the current (non-obsolete) ticket, if any."""
        return self._current

    @property
    def is_active(self) -> bool:
        """Check whether a request is in flight."""
        return self._current is not None

    @property
    def pending(self) -> PendingReply | None:
        """Get a snapshot of the current request."""
        if self._current is None:
            return None
        return PendingReply(
            ticket_id=self._current.ticket_id,
            active=True,
            reason=self._current.reason,
            stage_snapshot=self._current.stage_snapshot,
            since=self._current.created_at,
        )

    @property
    def obsolete_count(self) -> int:
        """Number of cancelled requests whose results have not arrived yet."""
        return sum(1 for ticket in self._outstanding if ticket.obsolete)

    def begin_pending(self, reason: PendingReason, stage_snapshot: StageState) -> ReplyTicket:
        """
        Start a new request.

        Args:
            reason: Why the request is made.
            stage_snapshot: Stage at the time of the request.

        Returns:
            The ticket for the new request.

        Raises:
            PendingReplyConflictError: If another request is still current.
        """
        if self._current is not None:
            raise PendingReplyConflictError(
                f"{self._name}: cannot begin '{reason.value}' while "
                f"'{self._current.reason.value}' is pending",
                details={"pending_ticket": str(self._current.ticket_id)},
            )
        ticket = ReplyTicket(reason=reason, stage_snapshot=stage_snapshot)
        self._current = ticket
        self._outstanding.append(ticket)
        logger.debug(f"{self._name}: pending {reason.value} ({ticket.ticket_id})")
        return ticket

    def complete(self, ticket: ReplyTicket | None = None) -> None:
        """
        Clear the current request. Safe to call repeatedly.

        Args:
            ticket: Ticket to clear; a stale ticket leaves a newer request alone.
        """
        target = ticket or self._current
        if target is None:
            return
        if target in self._outstanding:
            self._outstanding.remove(target)
        if self._current is target:
            self._current = None

    def cancel_and_discard(self) -> ReplyTicket | None:
        """
        Mark the current request obsolete.

        Its result will still be claimed when it arrives, but flagged for
        discarding.

        Returns:
            The cancelled ticket, or None if nothing was pending.
        """
        ticket = self._current
        if ticket is None:
            return None
        ticket.obsolete = True
        self._current = None
        logger.info(f"{self._name}: cancelled {ticket.reason.value} ({ticket.ticket_id})")
        return ticket

    def is_current(self, ticket_id: UUID) -> bool:
        """Check whether a ticket id is the current request."""
        return self._current is not None and self._current.ticket_id == ticket_id

    def owns(self, ticket_id: UUID) -> bool:
        """Check whether a ticket id is outstanding on this arbiter."""
        return any(t.ticket_id == ticket_id for t in self._outstanding)

    def claim(self, ticket_id: UUID | None = None) -> Claim:
        """
        Match an incoming result to its outstanding request.

        Obsolete tickets are retired here and logged with their
        '<reason>_discarded' marker.

        Args:
            ticket_id: Ticket the result belongs to; None means oldest outstanding.

        Returns:
            The claimed ticket and whether its result must be dropped.

        Raises:
            ProtocolDesyncError: If no outstanding request matches.
        """
        if ticket_id is None:
            if not self._outstanding:
                raise ProtocolDesyncError(f"{self._name}: result arrived with no pending request")
            ticket = self._outstanding[0]
        else:
            ticket = next((t for t in self._outstanding if t.ticket_id == ticket_id), None)
            if ticket is None:
                raise ProtocolDesyncError(
                    f"{self._name}: result for unknown request",
                    details={"ticket_id": str(ticket_id)},
                )

        if ticket.obsolete:
            self._outstanding.remove(ticket)
            logger.info(f"{self._name}: {ticket.discard_marker} ({ticket.ticket_id})")
            return Claim(ticket=ticket, discarded=True)
        return Claim(ticket=ticket, discarded=False)
