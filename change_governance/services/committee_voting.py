"""
Committee Voting Engine: Change Control Board (CCB) votes and live tally.

The roster is a configuration table (COMMITTEE_ROSTER) of five seats, each
bound to the functional role allowed to occupy it. The roster is the same
for every change.

Tally rules:
    quorum_pct  = voted seats / total seats * 100
    approve_pct = approve votes / total seats * 100   (whole roster, not votes cast)
    has_quorum  = quorum_pct >= 60
    has_majority = has_quorum and approve_pct > 50
    result      = pending until every seat has voted, then approved when
                  quorum and majority hold, otherwise rejected

Two approvals out of five seats is 40% of the roster, which is not a
majority even though every cast vote approved.

Usage:
    engine = CommitteeVotingEngine(change.committee_votes)
    engine.cast_vote(SeatId.PM, VoteValue.APPROVE, actor)
    engine.tally().result   # TallyResult.PENDING
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from change_governance.core.exceptions import InvalidVoter
from change_governance.models.change_request import (
    CommitteeVote,
    FunctionalRole,
    SeatId,
    VoteValue,
    utcnow,
)

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Roster configuration
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CommitteeSeat:
    seat_id: SeatId
    label: str
    functional_role: FunctionalRole
    # Declared for display; quorum and majority arithmetic ignore it.
    required: bool = False


COMMITTEE_ROSTER: tuple[CommitteeSeat, ...] = (
    CommitteeSeat(SeatId.PM, "Project Manager", FunctionalRole.PROJECT_MANAGER, required=True),
    CommitteeSeat(SeatId.TECH, "Technical Lead", FunctionalRole.TECHNICAL_LEAD, required=True),
    CommitteeSeat(SeatId.FINANCE, "Finance Manager", FunctionalRole.FINANCE_MANAGER),
    CommitteeSeat(SeatId.QUALITY, "Quality Manager", FunctionalRole.QUALITY_MANAGER),
    CommitteeSeat(SeatId.SPONSOR, "Sponsor", FunctionalRole.SPONSOR, required=True),
)

# Functional role → the seat key it votes under. "executive" maps to a seat
# key that has no place in the roster, so executives cannot vote.
SEAT_FOR_ROLE: dict[FunctionalRole, str] = {
    FunctionalRole.EXECUTIVE: "executive",
    FunctionalRole.SPONSOR: SeatId.SPONSOR.value,
    FunctionalRole.PROJECT_MANAGER: SeatId.PM.value,
    FunctionalRole.FINANCE_MANAGER: SeatId.FINANCE.value,
    FunctionalRole.QUALITY_MANAGER: SeatId.QUALITY.value,
    FunctionalRole.TECHNICAL_LEAD: SeatId.TECH.value,
}

VOTING_THRESHOLDS: dict[str, Any] = {
    "quorum_min_pct": 60,       # inclusive
    "majority_over_pct": 50,    # strictly greater, of the whole roster
}


class TallyResult(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class VoteTally:
    total_seats: int
    voted_count: int
    approve_count: int
    reject_count: int
    abstain_count: int
    quorum_pct: float
    approve_pct: float
    reject_pct: float
    abstain_pct: float
    has_quorum: bool
    has_majority: bool
    result: TallyResult

    @property
    def is_final(self) -> bool:
        return self.result != TallyResult.PENDING

    def to_dict(self) -> dict:
        return {
            "total_seats": self.total_seats,
            "voted_count": self.voted_count,
            "approve_count": self.approve_count,
            "reject_count": self.reject_count,
            "abstain_count": self.abstain_count,
            "quorum_pct": round(self.quorum_pct, 1),
            "approve_pct": round(self.approve_pct, 1),
            "reject_pct": round(self.reject_pct, 1),
            "abstain_pct": round(self.abstain_pct, 1),
            "has_quorum": self.has_quorum,
            "has_majority": self.has_majority,
            "result": self.result.value,
        }


def seat_for_role(functional_role) -> str | None:
    """Seat key a functional role votes under, or None."""
    fr = FunctionalRole.parse(functional_role)
    return SEAT_FOR_ROLE.get(fr) if fr else None


def empty_ballot(roster: tuple[CommitteeSeat, ...] = COMMITTEE_ROSTER) -> tuple[CommitteeVote, ...]:
    """One unset vote per roster seat, in roster order."""
    return tuple(CommitteeVote(seat_id=seat.seat_id) for seat in roster)


# ═════════════════════════════════════════════════════════════════════════════
# Engine
# ═════════════════════════════════════════════════════════════════════════════

class CommitteeVotingEngine:
    """Vote recording and tally for one change request.

    The engine works on its own copy of the ballot; the caller writes
    ``engine.votes`` back onto a new change request.
    """

    def __init__(
        self,
        votes: tuple[CommitteeVote, ...] | list[CommitteeVote] | None = None,
        roster: tuple[CommitteeSeat, ...] = COMMITTEE_ROSTER,
    ) -> None:
        self.roster = roster
        recorded = {v.seat_id: v for v in (votes or ())}
        self._votes: dict[SeatId, CommitteeVote] = {
            seat.seat_id: recorded.get(seat.seat_id, CommitteeVote(seat_id=seat.seat_id))
            for seat in roster
        }

    @property
    def votes(self) -> tuple[CommitteeVote, ...]:
        return tuple(self._votes.values())

    def seat(self, seat_id: SeatId) -> CommitteeSeat | None:
        return next((s for s in self.roster if s.seat_id == seat_id), None)

    def cast_vote(
        self,
        seat_id,
        value,
        actor,
        comments: str = "",
        now: datetime | None = None,
    ) -> CommitteeVote:
        """Record ``value`` for ``seat_id`` on behalf of ``actor``.

        ``actor`` is anything with a ``functional_role`` attribute
        (ActorContext, ActorSnapshot). A vote for a seat overwrites the
        previous one and restamps ``voted_at``.

        Raises:
            InvalidVoter: the actor's functional role does not map to the seat,
                or the seat is not on the roster.
            ValueError: ``value`` is not approve / reject / abstain.
        """
        seat_key = seat_id.value if isinstance(seat_id, SeatId) else str(seat_id)
        functional_role = getattr(actor, "functional_role", None)
        fr_value = functional_role.value if isinstance(functional_role, FunctionalRole) else functional_role

        seat = self.seat(SeatId(seat_key)) if seat_key in SeatId._value2member_map_ else None
        if seat is None or seat_for_role(functional_role) != seat_key:
            raise InvalidVoter(seat_key, fr_value)

        vote = CommitteeVote(
            seat_id=seat.seat_id,
            vote=VoteValue(value),
            comments=(comments or "").strip(),
            voted_at=now or utcnow(),
        )
        self._votes[seat.seat_id] = vote
        logger.debug("Committee vote recorded seat=%s vote=%s", seat_key, vote.vote.value)
        return vote

    def tally(self) -> VoteTally:
        votes = list(self._votes.values())
        total = len(self.roster)
        voted = sum(1 for v in votes if v.vote is not None)
        approve = sum(1 for v in votes if v.vote == VoteValue.APPROVE)
        reject = sum(1 for v in votes if v.vote == VoteValue.REJECT)
        abstain = sum(1 for v in votes if v.vote == VoteValue.ABSTAIN)

        def pct(count: int) -> float:
            return (count / total) * 100 if total else 0.0

        quorum_pct = pct(voted)
        approve_pct = pct(approve)
        has_quorum = total > 0 and quorum_pct >= VOTING_THRESHOLDS["quorum_min_pct"]
        has_majority = has_quorum and approve_pct > VOTING_THRESHOLDS["majority_over_pct"]

        result = TallyResult.PENDING
        if total and voted == total:
            result = TallyResult.APPROVED if has_quorum and has_majority else TallyResult.REJECTED

        return VoteTally(
            total_seats=total,
            voted_count=voted,
            approve_count=approve,
            reject_count=reject,
            abstain_count=abstain,
            quorum_pct=quorum_pct,
            approve_pct=approve_pct,
            reject_pct=pct(reject),
            abstain_pct=pct(abstain),
            has_quorum=has_quorum,
            has_majority=has_majority,
            result=result,
        )


def tally_votes(votes) -> VoteTally:
    """Tally a stored ballot without casting anything."""
    return CommitteeVotingEngine(votes).tally()
