from __future__ import annotations

import json
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..models.task import SourceEvidence, Task
from .text import normalize_title_key

logger = logging.getLogger("app.tasks")

UNTITLED = "Untitled Task"

_GENERIC_ONLY = re.compile(
    r"^(action item|action items|task|tasks|todo|to do|item|items|next step|meeting action|"
    r"refined task|simplified task|root topic)$"
)
_GENERIC_WITH_NUMBER = re.compile(
    r"^(action item|task|todo|to do|item|next step|meeting action|refined task|simplified task|"
    r"root topic)\s*#?\d+$"
)
_HAS_LETTER = re.compile(r"[a-zA-Z]")
_NUMERIC_OR_LETTER = re.compile(r"^(?:[0-9]+|[a-zA-Z])$")
_LIST_MARKER = re.compile(r"^[0-9a-zA-Z]{1,2}[.)]?$")

_PRIORITIES = {"high", "medium", "low"}
_STATUSES = {"todo", "inprogress", "done", "recurring"}


class TaskCycleError(ValueError):
    """A task forest where a node reuses the id of one of its ancestors."""


# --------------------------- Title validation ----------------------------
def is_placeholder_title(title: Optional[str]) -> bool:
    if not title:
        return True
    trimmed = title.strip().lower()
    if not trimmed:
        return True
    return bool(_GENERIC_ONLY.match(trimmed) or _GENERIC_WITH_NUMBER.match(trimmed))


def is_valid_title(title: Optional[str]) -> bool:
    if not title or not title.strip():
        return False
    if is_placeholder_title(title):
        return False
    trimmed = title.strip()
    if not _HAS_LETTER.search(trimmed):
        return False
    if _NUMERIC_OR_LETTER.match(trimmed):
        return False
    if len(trimmed) <= 3 and _LIST_MARKER.match(trimmed):
        return False
    return True


# ------------------------------ Traversal --------------------------------
def flatten(tasks: Iterable[Task]) -> List[Task]:
    """Pre-order list of every node in the forest."""
    out: List[Task] = []
    stack = list(reversed(list(tasks or [])))
    while stack:
        task = stack.pop()
        out.append(task)
        stack.extend(reversed(task.subtasks or []))
    return out


def flatten_with_paths(tasks: Iterable[Task]) -> List[Tuple[str, Task]]:
    """Pre-order (path, task) pairs; path is the dotted child-index path."""
    out: List[Tuple[str, Task]] = []
    stack = [(str(i), t) for i, t in enumerate(tasks or [])]
    stack.reverse()
    while stack:
        path, task = stack.pop()
        out.append((path, task))
        children = [(f"{path}.{i}", c) for i, c in enumerate(task.subtasks or [])]
        stack.extend(reversed(children))
    return out


def find_task_by_title(tasks: List[Task], title: str) -> Optional[Task]:
    for task in flatten(tasks):
        if task.title == title:
            return task
    return None


def ensure_acyclic(tasks: List[Task]) -> None:
    stack: List[Tuple[Task, frozenset]] = [(t, frozenset()) for t in tasks or []]
    while stack:
        task, ancestors = stack.pop()
        if task.id and task.id in ancestors:
            raise TaskCycleError(f"Task {task.id!r} appears inside its own subtree")
        below = ancestors | {task.id} if task.id else ancestors
        stack.extend((child, below) for child in task.subtasks or [])


def dump_tasks(tasks: List[Task]) -> str:
    """Compact camelCase JSON of a forest, for prompts and storage."""
    return json.dumps([t.model_dump(by_alias=True, exclude_none=True) for t in tasks], ensure_ascii=False)


# ------------------------------ Rewriting --------------------------------
def assign_stable_ids(tasks: Any) -> List[Task]:
    """Give every node an id, a title and a priority. Existing ids are kept."""
    if not isinstance(tasks, list):
        logger.error("assign_stable_ids received non-list input: %r", type(tasks).__name__)
        return []
    out: List[Task] = []
    for task in tasks:
        if task is None:
            continue
        out.append(
            task.model_copy(
                update={
                    "id": task.id or str(uuid.uuid4()),
                    "title": task.title or UNTITLED,
                    "priority": task.priority or "medium",
                    "subtasks": assign_stable_ids(list(task.subtasks or [])),
                }
            )
        )
    return out


def filter_valid(tasks: List[Task]) -> List[Task]:
    """Drop nodes with empty or placeholder titles, depth first."""
    out: List[Task] = []
    for task in tasks or []:
        if not is_valid_title(task.title):
            logger.warning("Filtering out task with invalid title: %r", task.title)
            continue
        out.append(task.model_copy(update={"subtasks": filter_valid(task.subtasks)}))
    return out


def remove_tasks_by_ids(tasks: List[Task], ids: Set[str]) -> List[Task]:
    return [
        t.model_copy(update={"subtasks": remove_tasks_by_ids(t.subtasks, ids)})
        for t in tasks
        if not (t.id and t.id in ids)
    ]


# --------------------------- AI output coercion --------------------------
def _clean_str(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _coerce_title(title: Any, description: Any, fallback: str) -> Optional[str]:
    candidate = _clean_str(title)
    if candidate and is_valid_title(candidate):
        return candidate
    desc = _clean_str(description)
    if desc:
        first = re.split(r"[\n.!?]", desc)[0].strip() or desc[:80].strip()
        if first and is_valid_title(first):
            return first
    if is_valid_title(fallback):
        return fallback
    return None


def _coerce_evidence(raw: Any) -> Optional[List[SourceEvidence]]:
    if not isinstance(raw, list):
        return None
    items: List[SourceEvidence] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        snippet = _clean_str(entry.get("snippet"))
        if not snippet:
            continue
        items.append(
            SourceEvidence(
                snippet=snippet,
                speaker=_clean_str(entry.get("speaker")),
                timestamp=_clean_str(entry.get("timestamp")),
            )
        )
    return items or None


def _first(node: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if node.get(key) is not None:
            return node[key]
    return None


def _normalize_node(node: Any, index: int, prefix: str) -> Optional[Task]:
    if isinstance(node, Task):
        node = node.model_dump()
    if isinstance(node, str):
        title = node.strip()
        return Task(title=title) if is_valid_title(title) else None
    if not isinstance(node, dict):
        return None

    title = _coerce_title(node.get("title"), node.get("description"), f"{prefix} {index + 1}")
    if not title:
        return None
    priority = (_clean_str(node.get("priority")) or "").lower()
    status = (_clean_str(node.get("status")) or "").lower()
    return Task(
        id=_clean_str(node.get("id")),
        title=title,
        description=_clean_str(node.get("description")),
        priority=priority if priority in _PRIORITIES else "medium",
        status=status if status in _STATUSES else None,
        assignee_name=_clean_str(_first(node, "assigneeName", "assignee_name", "assignee")),
        due_at=_clean_str(_first(node, "dueAt", "due_at", "due")),
        source_evidence=_coerce_evidence(_first(node, "sourceEvidence", "source_evidence")),
        subtasks=normalize_ai_tasks(node.get("subtasks"), f"{title} follow-up"),
    )


def normalize_ai_tasks(raw: Any, fallback_prefix: str = "Next step") -> List[Task]:
    """Coerce loosely shaped model output into valid Task nodes."""
    if not isinstance(raw, list):
        return []
    out: List[Task] = []
    for index, node in enumerate(raw):
        task = _normalize_node(node, index, fallback_prefix)
        if task is not None:
            out.append(task)
    return out


# ---------------------------- Level alignment ----------------------------
def _find_matching(task: Task, candidates: List[Task]) -> Optional[Task]:
    key = normalize_title_key(task.title)
    if not key:
        return None
    for candidate in candidates:
        if normalize_title_key(candidate.title) == key:
            return candidate
    for candidate in candidates:
        other = normalize_title_key(candidate.title)
        if other and (other in key or key in other):
            return candidate
    return None


def align_tasks_to_light(light: List[Task], tasks: List[Task]) -> List[Task]:
    """Make a deeper level follow the top-level titles and order of the light level."""
    if not light:
        return tasks
    if not tasks:
        return light
    out: List[Task] = []
    for index, light_task in enumerate(light):
        match = _find_matching(light_task, tasks) or (tasks[index] if index < len(tasks) else None)
        if match is None:
            out.append(light_task)
            continue
        out.append(
            match.model_copy(
                update={
                    "title": light_task.title,
                    "description": match.description or light_task.description,
                    "assignee_name": match.assignee_name or light_task.assignee_name,
                    "due_at": match.due_at or light_task.due_at,
                    "source_evidence": match.source_evidence or light_task.source_evidence,
                }
            )
        )
    return out


# --------------------------- Priority inference --------------------------
_HIGH_PRIORITY = (
    "asap", "urgent", "critical", "top priority", "high priority", "eod", "end of day",
    "tomorrow", "deadline", "launch", "ship", "final", "finalize",
)
_LOW_PRIORITY = ("later", "someday", "nice to have", "optional", "if time", "when possible", "backlog")


def _days_until(due_at: Optional[str]) -> Optional[float]:
    if not due_at:
        return None
    try:
        due = datetime.fromisoformat(due_at.replace("Z", "+00:00"))
    except ValueError:
        return None
    if due.tzinfo is None:
        due = due.replace(tzinfo=timezone.utc)
    return (due - datetime.now(timezone.utc)).total_seconds() / 86400


def _infer_priority(text: str, due_at: Optional[str]) -> str:
    lowered = text.lower()
    if any(k in lowered for k in _HIGH_PRIORITY):
        return "high"
    if any(k in lowered for k in _LOW_PRIORITY):
        return "low"
    days = _days_until(due_at)
    if days is not None:
        if days <= 3:
            return "high"
        if days >= 30:
            return "low"
    return "medium"


def apply_task_metadata(tasks: List[Task]) -> List[Task]:
    """Infer a priority for nodes still at the default one."""
    out: List[Task] = []
    for task in tasks:
        evidence = task.source_evidence[0].snippet if task.source_evidence else ""
        context = " ".join(p for p in (task.title, task.description or "", evidence) if p)
        priority = task.priority if task.priority != "medium" else _infer_priority(context, task.due_at)
        out.append(task.model_copy(update={"priority": priority, "subtasks": apply_task_metadata(task.subtasks)}))
    return out
