"""Two-step delete: ask first, remove on the next turn.

The caller receives a ``PendingConfirmation`` with the confirmation prompt and
echoes it back with the reply. A reply that carries a confirmation phrase
("confirm delete <title>") still works without the echoed state.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import List, Optional

from ..models.chat import PendingConfirmation
from ..models.task import Task
from .task_tree import flatten, remove_tasks_by_ids

_DELETE = re.compile(r"\b(delete|remove|archive)\b", re.I)
_CONFIRM_DELETE = re.compile(r"(confirm delete|yes delete|delete it|go ahead delete|confirm removal)", re.I)
_AFFIRM_WORD = r"(?:y|yes|yep|yeah|sure|ok|okay|confirm|confirmed|do it|go ahead|please do|delete it|please|thanks|thank you)"
# The whole reply must be an affirmation; anything longer is a new instruction.
_AFFIRMATIVE = re.compile(
    rf"^\s*(?:y|yes|yep|yeah|sure|ok|okay|confirm|confirmed|do it|go ahead|please do|delete it)\b"
    rf"(?:[\s,]+{_AFFIRM_WORD}\b)*[\s.!]*$",
    re.I,
)
_NEGATIVE = re.compile(r"^\s*(n|no|nope|cancel|stop|never ?mind|don'?t|do not|keep it)\b", re.I)


def is_delete_intent(message: str) -> bool:
    return bool(_DELETE.search(message))


def is_confirm_delete(message: str) -> bool:
    return bool(_CONFIRM_DELETE.search(message))


def is_affirmative(message: str) -> bool:
    return bool(_AFFIRMATIVE.match(message)) or is_confirm_delete(message)


def is_negative(message: str) -> bool:
    return bool(_NEGATIVE.match(message))


def request_confirmation(task: Task) -> tuple[str, PendingConfirmation]:
    text = f'Confirm deletion of "{task.title}"? Reply "confirm delete {task.title}".'
    return text, PendingConfirmation(task_id=task.id or "", task_title=task.title)


def delete_task(tasks: List[Task], task: Task) -> tuple[str, List[Task]]:
    if not task.id:
        return f'I couldn\'t delete "{task.title}" because it has no id.', tasks
    return f'Deleted "{task.title}".', remove_tasks_by_ids(tasks, {task.id})


class PendingOutcome(str, enum.Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    MISSING = "missing"
    STALE = "stale"


@dataclass
class PendingResolution:
    outcome: PendingOutcome
    chat_response_text: str = ""
    tasks: List[Task] = field(default_factory=list)


def resolve_pending(message: str, pending: PendingConfirmation, tasks: List[Task]) -> PendingResolution:
    """Settle an echoed confirmation against the user's reply.

    ``STALE`` means the reply was about something else; the caller drops the
    pending state and routes the message normally.
    """
    if is_negative(message):
        return PendingResolution(
            PendingOutcome.CANCELLED, f'Okay, I kept "{pending.task_title}".', tasks
        )
    if not is_affirmative(message):
        return PendingResolution(PendingOutcome.STALE, tasks=tasks)
    target: Optional[Task] = next((t for t in flatten(tasks) if t.id == pending.task_id), None)
    if target is None:
        return PendingResolution(
            PendingOutcome.MISSING,
            f'"{pending.task_title}" is no longer in your task list, so there was nothing to delete.',
            tasks,
        )
    text, remaining = delete_task(tasks, target)
    return PendingResolution(PendingOutcome.CONFIRMED, text, remaining)
