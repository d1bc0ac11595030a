from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse

from ..db import delete_session, get_session, list_sessions, new_session
from ..models.task import Task
from ..services.task_tree import flatten_with_paths

router = APIRouter(tags=["sessions"])


def _fetch_session(session_id: str) -> Dict[str, Any]:
    session = get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return session


@router.post("/session/new")
def v1_session_new(title: str = "Untitled") -> Dict[str, Any]:
    session = new_session(title)
    return {"ok": True, "session_id": session["id"], "title": title}


@router.get("/session/{session_id}")
def v1_session_get(session_id: str) -> Dict[str, Any]:
    return _fetch_session(session_id)


@router.get("/sessions")
def v1_sessions_list(limit: int = Query(200, ge=1, le=1000)) -> List[Dict[str, Any]]:
    return list_sessions(limit=limit)


@router.delete("/session/{session_id}")
def v1_session_delete(session_id: str) -> Dict[str, Any]:
    deleted = delete_session(session_id)
    if deleted == 0:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return {"ok": True, "session_id": session_id, "deleted": deleted}


@router.get("/session/{session_id}/export.md", response_class=PlainTextResponse)
def v1_export_session_markdown(session_id: str) -> str:
    session = _fetch_session(session_id)
    tasks = [Task.model_validate(t) for t in session["tasks"]]

    header_lines: List[str] = [f"# {session['title'] or 'Untitled'}"]
    if session["started_at"]:
        header_lines.append(f"_Started: {session['started_at']}_")
    if session["summary"]:
        header_lines += ["", session["summary"]]
    header_lines.append("")

    lines: List[str] = []
    for path, task in flatten_with_paths(tasks):
        indent = "  " * path.count(".")
        box = "x" if task.status == "done" else " "
        extra = []
        if task.assignee_name:
            extra.append(f"@{task.assignee_name}")
        if task.due_at:
            extra.append(f"due {task.due_at}")
        if task.priority != "medium":
            extra.append(task.priority)
        suffix = f" ({', '.join(extra)})" if extra else ""
        lines.append(f"{indent}- [{box}] {task.title}{suffix}")
    return "\n".join(header_lines + lines) + "\n"
