from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Priority = Literal["high", "medium", "low"]
TaskStatus = Literal["todo", "inprogress", "done", "recurring"]
DetailLevel = Literal["light", "medium", "detailed"]


class WireModel(BaseModel):
    """Base for models exchanged as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SourceEvidence(WireModel):
    snippet: str
    speaker: Optional[str] = None
    timestamp: Optional[str] = None


class Task(WireModel):
    id: Optional[str] = Field(None, description="Opaque stable identifier, assigned once")
    title: str = ""
    description: Optional[str] = None
    priority: Priority = "medium"
    status: Optional[TaskStatus] = None
    assignee_name: Optional[str] = None
    due_at: Optional[str] = Field(None, description="ISO-8601 due date")
    source_evidence: Optional[List[SourceEvidence]] = None
    subtasks: List["Task"] = Field(default_factory=list)

    @field_validator("subtasks", mode="before")
    @classmethod
    def _drop_malformed_subtasks(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, (dict, Task))]


class TaskLevels(WireModel):
    light: List[Task] = Field(default_factory=list)
    medium: List[Task] = Field(default_factory=list)
    detailed: List[Task] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.light or self.medium or self.detailed)


class Person(WireModel):
    name: str
    email: Optional[str] = None
    title: Optional[str] = None
    role: Optional[Literal["attendee", "mentioned"]] = None


class KeyMoment(WireModel):
    timestamp: str
    description: str


Task.model_rebuild()
