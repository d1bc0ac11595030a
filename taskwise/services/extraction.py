"""Model-backed extraction routines consumed by the dispatcher.

Each routine builds a prompt, asks the text generator for JSON, coerces whatever
comes back into valid task nodes and falls back to a heuristic result when the
output is missing or malformed. None of them raise on bad model output.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..models.task import KeyMoment, Person, Task, TaskLevels
from .llm import Prompt, TextGenerator, as_object, extract_json_value, get_string
from .matcher import score_task
from .task_tree import (
    align_tasks_to_light,
    apply_task_metadata,
    dump_tasks,
    filter_valid,
    flatten,
    flatten_with_paths,
    is_valid_title,
    normalize_ai_tasks,
)
from .text import normalize_title_key, tokenize
from .transcript import extract_action_items, extract_attendees

logger = logging.getLogger("app.extraction")

_MULTI_STEP_TRIGGERS = (
    "make", "build", "create", "develop", "design", "launch", "bake", "cook", "prepare",
    "plan", "organize", "set up", "setup", "write", "draft",
)
_DELETE_WORDS = re.compile(r"\b(delete|remove|archive)\b", re.I)

TASK_RULES = (
    "Never create tasks with empty or placeholder titles such as \"1.\", \"a)\", \"Subtask\" or \"Task 1\"; "
    "every title must be descriptive and action-oriented."
)


@dataclass
class MeetingAnalysis:
    chat_response_text: str
    all_task_levels: TaskLevels
    session_title: Optional[str] = None
    meeting_summary: Optional[str] = None
    attendees: List[Person] = field(default_factory=list)
    mentioned_people: List[Person] = field(default_factory=list)
    key_moments: List[KeyMoment] = field(default_factory=list)


@dataclass
class ExtractionResult:
    chat_response_text: str
    tasks: List[Task]
    session_title: Optional[str] = None
    all_task_levels: Optional[TaskLevels] = None


@dataclass
class RefineResult:
    chat_response_text: str
    updated_tasks: List[Task]


# ----------------------------- Title rewriting ----------------------------
def _apply_titles(tasks: List[Task], titles: Dict[str, str], prefix: str = "") -> List[Task]:
    out: List[Task] = []
    for i, task in enumerate(tasks):
        path = f"{prefix}{i}"
        update: Dict[str, Any] = {"subtasks": _apply_titles(task.subtasks, titles, f"{path}.")}
        if path in titles:
            update["title"] = titles[path]
        out.append(task.model_copy(update=update))
    return out


async def rewrite_task_titles(generator: TextGenerator, tasks: List[Task], context: str) -> List[Task]:
    """Rewrite titles into short imperative phrases; returns the input on any failure."""
    if not tasks:
        return tasks
    items = [{"path": path, "title": t.title} for path, t in flatten_with_paths(tasks)]
    prompt = Prompt(
        name="rewrite_task_titles",
        system="You rewrite task titles. Respond with a single JSON object only.",
        user=(
            "Rewrite each title as a concise, specific imperative (max 10 words). "
            "Keep the meaning; do not add or drop items; keep every path.\n"
            f"Context: {context}\n"
            f"Titles: {json.dumps(items, ensure_ascii=False)}\n"
            'Return JSON: {"tasks": [{"path": "0", "title": "..."}]}'
        ),
    )
    try:
        result = await generator.generate(prompt)
    except Exception as e:
        logger.warning(f"rewrite_task_titles failed: {e}")
        return tasks
    raw = extract_json_value(result.output, result.text)
    entries = raw if isinstance(raw, list) else as_object(raw).get("tasks")
    if not isinstance(entries, list):
        return tasks
    titles: Dict[str, str] = {}
    for entry in entries:
        entry = as_object(entry)
        path = get_string(entry.get("path"))
        title = get_string(entry.get("title"))
        if path and title and is_valid_title(title):
            titles[path] = title
    return _apply_titles(tasks, titles)


# ---------------------------- Meeting analysis ----------------------------
def _people(raw: Any, role: str) -> List[Person]:
    people: List[Person] = []
    for entry in raw if isinstance(raw, list) else []:
        if isinstance(entry, str):
            entry = {"name": entry}
        entry = as_object(entry)
        name = get_string(entry.get("name"))
        if not name:
            continue
        people.append(Person(name=name, email=get_string(entry.get("email")), title=get_string(entry.get("title")), role=role))
    return people


def _key_moments(raw: Any) -> List[KeyMoment]:
    moments: List[KeyMoment] = []
    for entry in raw if isinstance(raw, list) else []:
        entry = as_object(entry)
        description = get_string(entry.get("description"))
        if description:
            moments.append(KeyMoment(timestamp=get_string(entry.get("timestamp")) or "N/A", description=description))
    return moments


async def analyze_meeting(generator: TextGenerator, transcript: str) -> MeetingAnalysis:
    prompt = Prompt(
        name="analyze_meeting",
        system="You are an expert meeting analyst. Respond with a single JSON object only.",
        user=(
            "Analyze the meeting transcript below.\n"
            "- allTaskLevels.light: the meeting's action items as top-level tasks.\n"
            "- allTaskLevels.medium: the SAME top-level tasks with one level of sub-tasks.\n"
            "- allTaskLevels.detailed: the SAME top-level tasks broken down one level deeper.\n"
            "- Each task may carry assigneeName, dueAt (ISO-8601), status (todo|inprogress|done) "
            "and sourceEvidence [{snippet, speaker, timestamp}].\n"
            f"- {TASK_RULES}\n"
            "Also return chatResponseText, sessionTitle, meetingSummary, attendees [{name, email, title}], "
            "mentionedPeople [{name}], keyMoments [{timestamp, description}].\n\n"
            f"Transcript:\n{transcript}"
        ),
    )
    result = await generator.generate(prompt)
    raw = as_object(extract_json_value(result.output, result.text))
    levels = as_object(raw.get("allTaskLevels"))

    light = filter_valid(normalize_ai_tasks(levels.get("light") or raw.get("tasks"), "Meeting action"))
    if not light:
        light = extract_action_items(transcript)
        logger.info(json.dumps({"analyze_meeting": "heuristic_tasks", "count": len(light)}))
    medium = filter_valid(normalize_ai_tasks(levels.get("medium"), "Meeting action")) or light
    detailed = filter_valid(normalize_ai_tasks(levels.get("detailed"), "Meeting action")) or medium

    light, medium, detailed = await asyncio.gather(
        rewrite_task_titles(generator, light, "meeting action items"),
        rewrite_task_titles(generator, medium, "meeting action items"),
        rewrite_task_titles(generator, detailed, "meeting action items"),
    )
    all_levels = TaskLevels(
        light=apply_task_metadata(light),
        medium=apply_task_metadata(align_tasks_to_light(light, medium)),
        detailed=apply_task_metadata(align_tasks_to_light(light, detailed)),
    )

    attendees = _people(raw.get("attendees"), "attendee") or extract_attendees(transcript)
    count = len(all_levels.light)
    return MeetingAnalysis(
        chat_response_text=get_string(raw.get("chatResponseText"))
        or f"I analyzed the meeting and found {count} action item{'s' if count != 1 else ''}.",
        all_task_levels=all_levels,
        session_title=get_string(raw.get("sessionTitle")),
        meeting_summary=get_string(raw.get("meetingSummary")),
        attendees=attendees,
        mentioned_people=_people(raw.get("mentionedPeople"), "mentioned"),
        key_moments=_key_moments(raw.get("keyMoments")),
    )


# ---------------------------- Message extraction --------------------------
def _lookup_key(task: Task) -> str:
    if task.id:
        return f"id:{task.id}"
    title = normalize_title_key(task.title)
    return f"title:{title}" if title else ""


def select_task_context(tasks: List[Task], message: str, cap: int) -> tuple[List[Task], Set[str], bool]:
    """Relevance-scoped subset of a long forest, for prompts that edit it."""
    flat = flatten(tasks)
    if len(flat) <= cap:
        return tasks, {k for k in map(_lookup_key, tasks) if k}, False
    tokens = tokenize(message)
    ranked = sorted(enumerate(flat), key=lambda p: (-score_task(p[1], tokens), p[0]))
    scoped: Dict[str, Task] = {}
    for _, task in ranked[:cap]:
        key = _lookup_key(task)
        if key and key not in scoped:
            scoped[key] = task
    return list(scoped.values()), set(scoped), True


def _overlay(base: Task, update: Task, subtasks: List[Task]) -> Task:
    fields = {
        name: getattr(update, name)
        for name in Task.model_fields
        if name not in ("id", "subtasks") and getattr(update, name) is not None
    }
    fields["id"] = base.id or update.id
    fields["subtasks"] = update.subtasks or subtasks
    return base.model_copy(update=fields)


def merge_scoped_updates(full: List[Task], updates: List[Task], scoped_keys: Set[str], message: str) -> List[Task]:
    """Fold edits of a scoped subset back into the full forest."""
    if not full:
        return updates
    if not updates:
        return full
    deleting = bool(_DELETE_WORDS.search(message))
    by_key = {k: t for t in updates for k in [_lookup_key(t)] if k}
    consumed: Set[str] = set()

    def walk(items: List[Task]) -> List[Task]:
        out: List[Task] = []
        for task in items:
            key = _lookup_key(task)
            children = walk(task.subtasks)
            if key and key in scoped_keys:
                updated = by_key.get(key)
                if updated is None:
                    if not deleting:
                        out.append(task.model_copy(update={"subtasks": children}))
                    continue
                consumed.add(key)
                out.append(_overlay(task, updated, children))
                continue
            out.append(task.model_copy(update={"subtasks": children}))
        return out

    merged = walk(full)
    appended = [t for t in updates if not _lookup_key(t) or _lookup_key(t) not in consumed]
    return merged + appended


def _should_force_breakdown(message: str, existing: List[Task]) -> bool:
    words = message.split()
    lowered = message.lower()
    return not existing and 0 < len(words) <= 10 and any(t in lowered for t in _MULTI_STEP_TRIGGERS)


async def extract_tasks_from_message(
    generator: TextGenerator,
    message: str,
    existing_tasks: Optional[List[Task]] = None,
    requested_detail_level: str = "medium",
    is_first_message: bool = False,
    focus_task: Optional[Task] = None,
    context_cap: int = 12,
) -> ExtractionResult:
    existing = list(existing_tasks or [])
    force_breakdown = _should_force_breakdown(message.strip(), existing)
    effective = (
        f"Break this down into concrete, step-by-step tasks that complete the goal: {message}"
        if force_breakdown
        else message
    )
    scoped, scoped_keys, trimmed = select_task_context(existing, effective, context_cap)

    if existing:
        scope_note = (
            f"The list below is a relevance-filtered subset of {len(flatten(existing))} tasks; "
            "return the updated subset only.\n"
            if trimmed
            else ""
        )
        focus = f'The request refers to the task "{focus_task.title}".\n' if focus_task else ""
        user = (
            "The user wants to add, remove or change tasks in their current list.\n"
            f"{scope_note}{focus}"
            f"Current tasks (JSON): {dump_tasks(scoped)}\n"
            f'User request: "{effective}"\n'
            "Apply the change only to the tasks the request mentions. Return the complete, updated list "
            "in `tasks`, preserving every id and property the user did not ask to change, and a short "
            "`chatResponseText` confirming the action.\n"
            f"{TASK_RULES}"
        )
    else:
        user = (
            f"Create a hierarchical task list for this input: {effective}\n"
            "Return `allTaskLevels` with three lists: `light` (top-level tasks), `medium` (the SAME "
            "top-level tasks plus one level of sub-tasks) and `detailed` (the SAME top-level tasks broken "
            f"down one level deeper). Copy the `{requested_detail_level}` list into `tasks`. "
            "Add a short `chatResponseText`"
            + (" and a short `sessionTitle`" if is_first_message else "")
            + f".\n{TASK_RULES}"
        )
    prompt = Prompt(
        name="extract_tasks",
        system="You are an expert assistant for creating and managing tasks. Respond with a single JSON object only.",
        user=user,
    )
    result = await generator.generate(prompt)
    raw = as_object(extract_json_value(result.output, result.text))

    levels_raw = raw.get("allTaskLevels")
    levels: Optional[TaskLevels] = None
    if isinstance(levels_raw, dict):
        levels = TaskLevels(
            light=filter_valid(normalize_ai_tasks(levels_raw.get("light"))),
            medium=filter_valid(normalize_ai_tasks(levels_raw.get("medium"))),
            detailed=filter_valid(normalize_ai_tasks(levels_raw.get("detailed"))),
        )
    tasks = filter_valid(normalize_ai_tasks(raw.get("tasks")))

    if not existing:
        breakdown: List[Task] = []
        if levels is not None:
            light, medium, detailed = await asyncio.gather(
                rewrite_task_titles(generator, levels.light, message),
                rewrite_task_titles(generator, levels.medium, message),
                rewrite_task_titles(generator, levels.detailed, message),
            )
            breakdown = detailed
            levels = TaskLevels(
                light=apply_task_metadata(light),
                medium=apply_task_metadata(align_tasks_to_light(light, medium)),
                detailed=apply_task_metadata(align_tasks_to_light(light, detailed)),
            )
        if tasks:
            tasks = apply_task_metadata(await rewrite_task_titles(generator, tasks, message))
        elif levels is not None:
            tasks = getattr(levels, requested_detail_level, None) or levels.medium or levels.light or levels.detailed
        # alignment caps the top level at len(light)
        if force_breakdown and len(breakdown) > len(tasks):
            tasks = apply_task_metadata(breakdown)

    chat_text = get_string(raw.get("chatResponseText"))
    if not tasks:
        if existing:
            logger.warning("extract_tasks produced no tasks for a modification; keeping the current list")
            return ExtractionResult(
                chat_response_text="I couldn't work out that change. Could you rephrase which task to modify?",
                tasks=existing,
            )
        tasks = normalize_ai_tasks([message]) or [Task(title="Define next steps")]
    if trimmed:
        tasks = merge_scoped_updates(existing, tasks, scoped_keys, effective)

    return ExtractionResult(
        chat_response_text=chat_text or "I've created a task list from your input.",
        tasks=tasks,
        session_title=get_string(raw.get("sessionTitle")),
        all_task_levels=levels if levels is not None and not levels.is_empty() else None,
    )


# -------------------------------- Refinement ------------------------------
async def refine_tasks(
    generator: TextGenerator,
    instruction: str,
    full_task_list: List[Task],
    context_task: Optional[Task] = None,
    tasks_to_refine: Optional[List[Task]] = None,
) -> RefineResult:
    """Ask for the complete updated forest after refining a selection or one task."""
    if context_task is not None:
        scenario = (
            f'Break down the task "{context_task.title}" into sub-tasks and place them under that task '
            f"within the full list.\nInstruction: \"{instruction}\""
        )
    else:
        scenario = (
            f"Selected tasks (JSON): {dump_tasks(tasks_to_refine or [])}\n"
            f'Apply this instruction only to the selected tasks: "{instruction}" '
            "(merge, reword, add sub-tasks to, or delete them)."
        )
    prompt = Prompt(
        name="refine_tasks",
        system="You refine existing task lists. Respond with a single JSON object only.",
        user=(
            f"Full current task list (JSON): {dump_tasks(full_task_list)}\n"
            f"{scenario}\n"
            "Return the COMPLETE final list in `updatedTasks`, including every unaffected task unchanged "
            "with its original id, and a short `chatResponseText`.\n"
            f"{TASK_RULES}"
        ),
    )
    result = await generator.generate(prompt)
    raw = as_object(extract_json_value(result.output, result.text))
    return RefineResult(
        chat_response_text=get_string(raw.get("chatResponseText")) or "I've updated the tasks as requested.",
        updated_tasks=filter_valid(normalize_ai_tasks(raw.get("updatedTasks"), "Refined task")),
    )
