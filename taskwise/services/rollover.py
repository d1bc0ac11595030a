"""Carry task identity from a previous meeting of a series into the current one."""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Set, Union

from ..models.chat import PriorSession
from ..models.task import Task

logger = logging.getLogger("app.rollover")

SessionLookup = Callable[[str], Union[Optional[PriorSession], Awaitable[Optional[PriorSession]]]]


def titles_match(new_title: str, existing_title: str) -> bool:
    """Case-folded equality, or either title containing the other."""
    a = (new_title or "").strip().lower()
    b = (existing_title or "").strip().lower()
    if not a or not b:
        return False
    return a == b or a in b or b in a


def reconcile_with_existing(new_tasks: List[Task], existing_tasks: List[Task]) -> List[Task]:
    """Give new top-level tasks the id of the existing task they continue.

    Only the id is taken over; every other field of the new task is kept. Each
    existing id is claimed by the first new task that matches it.
    """
    if not existing_tasks:
        return list(new_tasks)
    claimed: Set[str] = set()
    out: List[Task] = []
    for task in new_tasks:
        match = next(
            (e for e in existing_tasks if e.id and e.id not in claimed and titles_match(task.title, e.title)),
            None,
        )
        if match is None:
            out.append(task)
            continue
        claimed.add(match.id)
        logger.debug("rollover matched %r to existing task %s", task.title, match.id)
        out.append(task.model_copy(update={"id": match.id}))
    return out


async def load_previous_session(lookup: Optional[SessionLookup], session_id: Optional[str]) -> Optional[PriorSession]:
    """Run ``lookup`` for ``session_id``; sync lookups (sqlite) run off the event loop."""
    if not lookup or not session_id:
        return None
    try:
        if inspect.iscoroutinefunction(lookup):
            result = lookup(session_id)
        else:
            result = await asyncio.to_thread(lookup, session_id)
        if inspect.isawaitable(result):
            result = await result
        return result
    except Exception as e:
        logger.error(f"Failed to load previous session {session_id}: {e}")
        return None


def _format_date(value: Optional[str]) -> str:
    if not value:
        return "Unknown Date"
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        return value


def build_previous_session_context(session: Optional[PriorSession]) -> Optional[str]:
    if session is None:
        return None
    titles = "\n".join(f"- {t.title} ({t.status or 'todo'})" for t in session.tasks)
    return (
        f'Previous Meeting: "{session.title or "Untitled"}" ({_format_date(session.started_at)})\n'
        f"Summary: {session.summary or 'No summary available.'}\n"
        f"Tasks from that meeting:\n{titles}"
    ).strip()
