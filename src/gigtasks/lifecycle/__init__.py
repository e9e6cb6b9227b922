# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Task lifecycle: status model, operation results and deferred notifications.

`TaskLifecycle` lives in `gigtasks.lifecycle.service`; it is not re-exported here
because the storage layer imports the models from this package.
"""

from .followups import FollowUp, FollowUpConfig, FollowUpRetrier
from .models import TRANSITIONS, Task, TaskDraft, TaskStatus, can_transition, clamp_max_bids
from .results import LifecycleError, Outcome

__all__ = [
    "TRANSITIONS",
    "FollowUp",
    "FollowUpConfig",
    "FollowUpRetrier",
    "LifecycleError",
    "Outcome",
    "Task",
    "TaskDraft",
    "TaskStatus",
    "can_transition",
    "clamp_max_bids",
]
