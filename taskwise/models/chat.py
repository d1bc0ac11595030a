from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import Field, field_validator, model_validator

from .task import DetailLevel, KeyMoment, Person, Task, TaskLevels, WireModel
from ..services.task_tree import ensure_acyclic

Intent = Literal["knowledge", "action", "ambiguous"]


class PendingConfirmation(WireModel):
    """Destructive action awaiting the user's next message.

    Returned to the caller, who echoes it back on the following turn.
    """

    action: Literal["delete"] = "delete"
    task_id: str
    task_title: str


class TurnRequest(WireModel):
    message: str
    existing_tasks: List[Task] = Field(default_factory=list)
    selected_tasks: Optional[List[Task]] = None
    context_task_title: Optional[str] = None
    source_meeting_transcript: Optional[str] = None
    previous_meeting_id: Optional[str] = None
    requested_detail_level: DetailLevel = "medium"
    is_first_message: bool = False
    pending_confirmation: Optional[PendingConfirmation] = None

    @field_validator("existing_tasks", "selected_tasks", mode="before")
    @classmethod
    def _drop_malformed_lists(cls, value: Any) -> Any:
        if value is None:
            return value
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, (dict, Task))]

    @model_validator(mode="after")
    def _reject_cycles(self) -> "TurnRequest":
        ensure_acyclic(self.existing_tasks)
        if self.selected_tasks:
            ensure_acyclic(self.selected_tasks)
        return self

    @property
    def has_transcript(self) -> bool:
        return bool(self.source_meeting_transcript and self.source_meeting_transcript.strip())

    @property
    def has_tasks(self) -> bool:
        return bool(self.existing_tasks)

    @property
    def has_selection(self) -> bool:
        return bool(self.selected_tasks) or bool(self.context_task_title)


class QASource(WireModel):
    timestamp: str = "N/A"
    snippet: str


class QAAnswer(WireModel):
    answer_text: str
    sources: List[QASource] = Field(default_factory=list)


class IntentResult(WireModel):
    intent: Intent
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    reasoning: Optional[str] = None
    clarifying_question: Optional[str] = None


class TurnResponse(WireModel):
    chat_response_text: str
    tasks: List[Task]
    session_title: Optional[str] = None
    all_task_levels: Optional[TaskLevels] = None
    people: Optional[List[Person]] = None
    qa_answer: Optional[QAAnswer] = None
    meeting_summary: Optional[str] = None
    key_moments: Optional[List[KeyMoment]] = None
    pending_confirmation: Optional[PendingConfirmation] = None
    route: str = Field("", description="Name of the dispatch rule that answered")


class PriorSession(WireModel):
    id: str
    title: Optional[str] = None
    summary: Optional[str] = None
    started_at: Optional[str] = None
    tasks: List[Task] = Field(default_factory=list)
