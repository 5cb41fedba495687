from __future__ import annotations

from achievement_tracker.errors import InvalidStateError

DRAFT = "draft"
SUBMITTED = "submitted"
VERIFIED = "verified"
REJECTED = "rejected"
DELETED = "deleted"

ALL_STATUSES: tuple[str, ...] = (DRAFT, SUBMITTED, VERIFIED, REJECTED, DELETED)

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    DRAFT: {SUBMITTED, DELETED},
    SUBMITTED: {VERIFIED, REJECTED},
    VERIFIED: set(),
    REJECTED: set(),
    DELETED: set(),
}

VERIFICATION_DECISIONS: frozenset[str] = frozenset({VERIFIED, REJECTED})


def validate_transition(current_status: str, new_status: str) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(current_status, set())


def is_terminal(status: str) -> bool:
    return status in ALLOWED_TRANSITIONS and not ALLOWED_TRANSITIONS[status]


def ensure_transition(current_status: str, new_status: str) -> None:
    if not validate_transition(current_status, new_status):
        raise InvalidStateError(f"invalid transition: {current_status} -> {new_status}")
