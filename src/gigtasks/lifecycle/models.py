# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Task entity and creation input.

Design principles:
- Pydantic v2 models; wire form is camelCase (`by_alias=True`), storage form
  is snake_case.
- Money is `Decimal` end to end and serializes as a string.
- Timestamps are timezone-aware datetimes.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..core.types import MAX_BIDS_DEFAULT, MAX_BIDS_MAX, MAX_BIDS_MIN, TaskId, UserId


class TaskStatus(str, Enum):
    OPEN = "OPEN"
    ASSIGNED = "ASSIGNED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self]


# Allowed edges of the lifecycle graph.
TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.OPEN: frozenset({TaskStatus.ASSIGNED, TaskStatus.CANCELLED}),
    TaskStatus.ASSIGNED: frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}


def can_transition(src: TaskStatus, dst: TaskStatus) -> bool:
    return dst in TRANSITIONS[src]


def clamp_max_bids(value: int | None) -> int:
    """Clamp the per-user bid limit into [1, 10]; None means the default (3)."""
    if value is None:
        return MAX_BIDS_DEFAULT
    return max(MAX_BIDS_MIN, min(MAX_BIDS_MAX, int(value)))


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class TaskDraft(_WireModel):
    """Creation input: task fields minus id, status and assignee."""

    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    poster_user_id: UserId
    deadline: datetime | None = None
    min_pay: Decimal | None = None
    max_pay: Decimal | None = None
    max_bids_per_user: int | None = None

    @field_validator("min_pay", "max_pay", mode="before")
    @classmethod
    def _no_float_money(cls, v: Any) -> Any:
        # Going through repr keeps 10.1 as Decimal("10.1") instead of the binary expansion.
        if isinstance(v, float):
            return Decimal(repr(v))
        return v


class Task(_WireModel):
    """A unit of gig work tracked through the OPEN → ... → COMPLETED/CANCELLED lifecycle."""

    id: TaskId | None = None
    title: str
    description: str
    poster_user_id: UserId
    assigned_user_id: UserId | None = None
    status: TaskStatus = TaskStatus.OPEN
    deadline: datetime | None = None
    min_pay: Decimal | None = None
    max_pay: Decimal | None = None
    max_bids_per_user: int = MAX_BIDS_DEFAULT

    @classmethod
    def from_draft(cls, draft: TaskDraft) -> Task:
        """Build an unsaved OPEN task; the store assigns `id`."""
        return cls(
            title=draft.title,
            description=draft.description,
            poster_user_id=draft.poster_user_id,
            deadline=draft.deadline,
            min_pay=draft.min_pay,
            max_pay=draft.max_pay,
            max_bids_per_user=clamp_max_bids(draft.max_bids_per_user),
        )

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready camelCase dict (the payload downstream consumers read)."""
        return self.model_dump(mode="json", by_alias=True)

    def to_doc(self) -> dict[str, Any]:
        """Storage document (snake_case, Decimal/datetime as strings)."""
        return self.model_dump(mode="json")

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> Task:
        return cls.model_validate({k: v for k, v in doc.items() if k != "_id"})
