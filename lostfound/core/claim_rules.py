"""Claim lifecycle transition rules by actor."""

from lostfound.db.enums import ClaimActor, ClaimStatus

PARTICIPANTS = frozenset({ClaimActor.ITEM_OWNER, ClaimActor.CLAIMER})

# (from, to) -> actors allowed to perform the move. Anything absent is illegal.
CLAIM_TRANSITIONS: dict[tuple[ClaimStatus, ClaimStatus], frozenset[ClaimActor]] = {
    (ClaimStatus.PENDING, ClaimStatus.ACCEPTED): frozenset({ClaimActor.ITEM_OWNER}),
    (ClaimStatus.PENDING, ClaimStatus.REJECTED): frozenset({ClaimActor.ITEM_OWNER}),
    (ClaimStatus.ACCEPTED, ClaimStatus.PAID): frozenset({ClaimActor.SETTLEMENT}),
    (ClaimStatus.PAID, ClaimStatus.SHIPPED): frozenset({ClaimActor.ITEM_OWNER}),
    (ClaimStatus.SHIPPED, ClaimStatus.DELIVERED): PARTICIPANTS,
}

# Position along the forward path; rejected sits beside accepted as a dead end
STATUS_RANK: dict[ClaimStatus, int] = {
    ClaimStatus.PENDING: 0,
    ClaimStatus.ACCEPTED: 1,
    ClaimStatus.REJECTED: 1,
    ClaimStatus.PAID: 2,
    ClaimStatus.SHIPPED: 3,
    ClaimStatus.DELIVERED: 4,
}


def is_legal_transition(current: ClaimStatus, target: ClaimStatus) -> bool:
    return (current, target) in CLAIM_TRANSITIONS


def allowed_actors(current: ClaimStatus, target: ClaimStatus) -> frozenset[ClaimActor]:
    return CLAIM_TRANSITIONS.get((current, target), frozenset())


def next_statuses(current: ClaimStatus, actor: ClaimActor) -> list[ClaimStatus]:
    """Statuses the actor may move a claim to from its current status."""
    return [
        target
        for (source, target), actors in CLAIM_TRANSITIONS.items()
        if source == current and actor in actors
    ]


def can_pay(status: ClaimStatus) -> bool:
    return status == ClaimStatus.ACCEPTED

