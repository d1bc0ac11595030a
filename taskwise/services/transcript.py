from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

from ..models.task import Person, SourceEvidence, Task
from .task_tree import is_valid_title
from .text import tokenize

_TIMESTAMP = re.compile(r"\b(\d{1,2}:\d{2}(?::\d{2})?)\b")
_SPEAKER_LINE = re.compile(
    r"^(?:\[?\(?\d{1,2}:\d{2}(?::\d{2})?\)?\]?\s*[-:]?\s*)?"
    r"([A-Z][A-Za-z.'-]*(?:\s+[A-Z][A-Za-z.'-]*){0,3})\s*(?:\(([^)]*)\))?\s*:\s*(.*)$"
)
_ACTION_KW = (
    "action", "follow up", "follow-up", "todo", "to-do", "will ", "i'll ", "we'll ",
    "assign", "deadline", "deliver", "need to", "needs to", "please",
)
_NOT_NAMES = {"Action", "Note", "Notes", "Summary", "Agenda", "Transcript", "Decision", "Todo"}


@dataclass
class TranscriptLine:
    text: str
    speaker: Optional[str] = None
    timestamp: Optional[str] = None


def extract_timestamp(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    m = _TIMESTAMP.search(text)
    return m.group(1) if m else None


def split_lines(transcript: str) -> List[str]:
    return [ln.strip() for ln in (transcript or "").splitlines() if ln.strip()]


def parse_lines(transcript: str) -> List[TranscriptLine]:
    """Group raw lines into speaker turns; unlabelled lines continue the last turn."""
    out: List[TranscriptLine] = []
    current: Optional[TranscriptLine] = None
    for line in split_lines(transcript):
        m = _SPEAKER_LINE.match(line)
        if m and m.group(1) not in _NOT_NAMES:
            current = TranscriptLine(text=m.group(3).strip(), speaker=m.group(1).strip(), timestamp=extract_timestamp(line))
            out.append(current)
            continue
        if current is not None:
            current.text = f"{current.text} {line}".strip()
        else:
            out.append(TranscriptLine(text=line, timestamp=extract_timestamp(line)))
    return out


def extract_attendees(transcript: str) -> List[Person]:
    people: List[Person] = []
    seen = set()
    for line in parse_lines(transcript):
        if not line.speaker or not line.text:
            continue
        key = line.speaker.lower()
        if key in seen:
            continue
        seen.add(key)
        people.append(Person(name=line.speaker, role="attendee"))
    return people


def _sentences(text: str) -> List[str]:
    return [s.strip() for s in re.split(r"(?<=[.!?])\s+", text) if s.strip()]


def _title_from_sentence(sentence: str) -> str:
    title = re.sub(r"^(ok(ay)?|so|and|well|alright)[,\s]+", "", sentence.strip(), flags=re.I)
    title = re.sub(r"^(i'll|i will|we'll|we will|we need to|i need to|you need to|please)\s+", "", title, flags=re.I)
    title = title.rstrip(".!?").strip()
    if len(title) > 90:
        title = title[:87].rstrip() + "..."
    return title[:1].upper() + title[1:]


def extract_action_items(transcript: str) -> List[Task]:
    """Heuristic tasks from action-like sentences, used when the model gives nothing."""
    tasks: List[Task] = []
    seen = set()
    for line in parse_lines(transcript):
        for sentence in _sentences(line.text):
            low = sentence.lower()
            if low.endswith("?") or not any(k in low for k in _ACTION_KW):
                continue
            title = _title_from_sentence(sentence)
            key = title.lower()
            if not is_valid_title(title) or key in seen:
                continue
            seen.add(key)
            tasks.append(
                Task(
                    title=title,
                    source_evidence=[SourceEvidence(snippet=sentence, speaker=line.speaker, timestamp=line.timestamp)],
                )
            )
            if len(tasks) >= 20:
                return tasks
    return tasks


def relevant_excerpt(transcript: str, question: str, max_chars: int = 5000) -> str:
    """Lines of a long transcript that share tokens with the question, plus neighbours."""
    clean = (transcript or "").strip()
    if len(clean) <= max_chars:
        return clean
    lines = split_lines(clean)
    if len(lines) <= 80:
        return clean
    query = set(tokenize(question))
    if not query:
        return "\n".join(lines[:30] + lines[-20:])

    scored = []
    for idx, line in enumerate(lines):
        toks = tokenize(line)
        if not toks:
            continue
        overlap = sum(1 for t in toks if t in query)
        scored.append((overlap / max(1, min(len(query), len(toks))), idx))
    scored.sort(key=lambda s: s[0], reverse=True)

    picked = set()
    for score, idx in scored[:24]:
        if score <= 0:
            continue
        picked.update(i for i in (idx - 1, idx, idx + 1) if 0 <= i < len(lines))
    if not picked:
        return "\n".join(lines[:50])
    return "\n".join(lines[i] for i in sorted(picked))
