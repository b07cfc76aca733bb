"""
Status state machines for campaigns and social posts.

``check_transition`` is pure: it looks only at the two statuses and the entity
kind, so the full table can be tested without a store. Callers decide what a
deny means for them; ``ensure_transition`` is the usual choice and raises
ConflictError. The per-status update permissions and the check that a
generating campaign has finished its posts live here too.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Type, Union

from src.specs.common.enums import CampaignStatus, EntityKind, PostStatus
from src.specs.common.errors import ConflictError


class DenyReason(str, Enum):
    GENERATION_IN_PROGRESS = "generation_in_progress"
    INVALID_TRANSITION = "invalid_transition"
    UNKNOWN_STATUS = "unknown_status"


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    reason: Optional[DenyReason] = None
    message: Optional[str] = None

    @classmethod
    def allow(cls) -> "TransitionDecision":
        return cls(True)

    @classmethod
    def deny(cls, reason: DenyReason, message: str) -> "TransitionDecision":
        return cls(False, reason, message)

    def __bool__(self) -> bool:
        return self.allowed


_C = CampaignStatus
_P = PostStatus

CAMPAIGN_TRANSITIONS: Dict[CampaignStatus, FrozenSet[CampaignStatus]] = {
    _C.PLANNED: frozenset({_C.GENERATING, _C.FAILED, _C.CANCELLED}),
    _C.GENERATING: frozenset({_C.PENDING_APPROVAL, _C.FAILED}),
    _C.PENDING_APPROVAL: frozenset({_C.COMPLETED, _C.CANCELLED, _C.GENERATING}),
    _C.COMPLETED: frozenset({_C.CANCELLED}),
    _C.FAILED: frozenset({_C.CANCELLED}),
    _C.CANCELLED: frozenset(),
}

POST_TRANSITIONS: Dict[PostStatus, FrozenSet[PostStatus]] = {
    _P.PLANNED: frozenset({_P.GENERATING, _P.SKIPPED}),
    _P.GENERATING: frozenset({_P.COMPLETED, _P.FAILED, _P.SKIPPED, _P.NEEDS_REVIEW}),
    _P.FAILED: frozenset({_P.GENERATING, _P.SKIPPED, _P.COMPLETED}),
    _P.NEEDS_REVIEW: frozenset({_P.GENERATING, _P.SKIPPED, _P.COMPLETED, _P.FAILED}),
    _P.COMPLETED: frozenset(),
    _P.SKIPPED: frozenset(),
}

_TABLES = {
    EntityKind.CAMPAIGN: (CampaignStatus, CAMPAIGN_TRANSITIONS),
    EntityKind.SOCIAL_POST: (PostStatus, POST_TRANSITIONS),
}

# Campaign fields a general update may write, by current status. A dotted name
# allows one key of a nested object.
PLAN_FIELDS = frozenset(
    {"brandId", "participants", "brief", "schedule", "cadenceOverrides", "messaging", "assetOverrides"}
)
_ALWAYS_UPDATABLE = frozenset({"name", "metadata", "status"})

UPDATABLE_FIELDS: Dict[CampaignStatus, FrozenSet[str]] = {
    _C.PLANNED: _ALWAYS_UPDATABLE | PLAN_FIELDS,
    _C.GENERATING: _ALWAYS_UPDATABLE | {"brief.description"},
    _C.PENDING_APPROVAL: _ALWAYS_UPDATABLE,
    _C.COMPLETED: _ALWAYS_UPDATABLE,
    _C.FAILED: _ALWAYS_UPDATABLE,
    _C.CANCELLED: _ALWAYS_UPDATABLE,
}

FINISHED_POST_STATUSES = frozenset({_P.COMPLETED, _P.FAILED, _P.SKIPPED, _P.NEEDS_REVIEW})


def _coerce(enum_cls: Type[Enum], value: Union[str, Enum]) -> Optional[Enum]:
    try:
        return enum_cls(getattr(value, "value", value))
    except ValueError:
        return None


def check_transition(
    current: Union[str, Enum],
    requested: Union[str, Enum],
    kind: EntityKind,
) -> TransitionDecision:
    enum_cls, table = _TABLES[EntityKind(kind)]
    cur = _coerce(enum_cls, current)
    req = _coerce(enum_cls, requested)
    if cur is None or req is None:
        bad = current if cur is None else requested
        return TransitionDecision.deny(
            DenyReason.UNKNOWN_STATUS,
            f"Unknown {EntityKind(kind).value} status '{getattr(bad, 'value', bad)}'",
        )

    if kind == EntityKind.CAMPAIGN and cur is _C.GENERATING and req is _C.CANCELLED:
        return TransitionDecision.deny(
            DenyReason.GENERATION_IN_PROGRESS,
            "Cannot cancel campaign while content generation is in progress",
        )
    if cur is req or req in table[cur]:
        return TransitionDecision.allow()
    return TransitionDecision.deny(
        DenyReason.INVALID_TRANSITION,
        f"Invalid status transition from {cur.value} to {req.value}",
    )


def ensure_transition(
    current: Union[str, Enum],
    requested: Union[str, Enum],
    kind: EntityKind,
) -> None:
    decision = check_transition(current, requested, kind)
    if not decision:
        raise ConflictError(
            decision.message or "Status transition not allowed",
            details={
                "reason": decision.reason.value if decision.reason else None,
                "currentStatus": getattr(current, "value", current),
                "requestedStatus": getattr(requested, "value", requested),
            },
        )


def updatable_fields(status: Union[str, Enum]) -> FrozenSet[str]:
    current = _coerce(CampaignStatus, status)
    if current is None:
        return frozenset()
    return UPDATABLE_FIELDS[current]


def next_status_from_posts(
    current: Union[str, Enum],
    post_statuses: Iterable[Union[str, Enum]],
) -> CampaignStatus:
    """Status a generating campaign is ready for, given its posts.

    Once every post has finished (completed, failed, skipped or needs_review)
    the campaign is ready for approval. A campaign without posts, with posts
    still in flight, or not generating keeps its status.
    """
    cur = CampaignStatus(getattr(current, "value", current))
    if cur is not _C.GENERATING:
        return cur
    statuses = [PostStatus(getattr(s, "value", s)) for s in post_statuses]
    if not statuses or any(s not in FINISHED_POST_STATUSES for s in statuses):
        return cur
    return _C.PENDING_APPROVAL
