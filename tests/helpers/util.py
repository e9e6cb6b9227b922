from __future__ import annotations

from decimal import Decimal

from gigtasks.lifecycle.models import TaskDraft

from .fakes import POSTER


def get_record_by_event(caplog, event_name: str):
    """
    Return the first log record whose 'event' attribute equals event_name.
    Raise StopIteration if not found to make failures explicit.
    """
    return next(r for r in caplog.records if getattr(r, "event", "") == event_name)


def records_by_event(caplog, event_name: str) -> list:
    return [r for r in caplog.records if getattr(r, "event", "") == event_name]


def make_draft(**overrides) -> TaskDraft:
    data = {
        "title": "Fix the fence",
        "description": "Two panels are broken",
        "poster_user_id": POSTER,
        "min_pay": Decimal("10.00"),
        "max_pay": Decimal("50.00"),
    }
    data.update(overrides)
    return TaskDraft(**data)
