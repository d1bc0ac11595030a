from __future__ import annotations

import logging
from typing import Any, List, Optional

from pydantic import ValidationError

from ..models.chat import QAAnswer, QASource
from ..models.task import Task
from .llm import Prompt, TextGenerator, as_object, extract_json_value, get_string
from .task_tree import dump_tasks, flatten
from .transcript import extract_action_items, extract_attendees, extract_timestamp, relevant_excerpt, split_lines

logger = logging.getLogger("app.qa")

NOT_ENOUGH_INFO = "The transcript does not contain enough information to answer that question."
NO_TRANSCRIPT = "Transcript data is not available for this meeting."


def _snippet_for_name(transcript: str, name: str) -> Optional[QASource]:
    needle = name.lower()
    for line in split_lines(transcript):
        if needle in line.lower():
            snippet = f"{line[:240].strip()}..." if len(line) > 240 else line
            return QASource(timestamp=extract_timestamp(line) or "N/A", snippet=snippet)
    return None


def _normalize_sources(value: Any) -> List[QASource]:
    sources: List[QASource] = []
    for entry in value if isinstance(value, list) else []:
        entry = as_object(entry)
        snippet = get_string(entry.get("snippet")) or get_string(entry.get("quote")) or get_string(entry.get("text"))
        if not snippet:
            continue
        timestamp = get_string(entry.get("timestamp")) or get_string(entry.get("time")) or extract_timestamp(snippet)
        sources.append(QASource(timestamp=timestamp or "N/A", snippet=snippet))
    return sources


def rule_based_answer(question: str, transcript: Optional[str], tasks: Optional[List[Task]] = None) -> QAAnswer:
    """Deterministic answer for common questions when the model gives nothing usable."""
    q = question.lower()
    transcript = (transcript or "").strip()
    if not transcript:
        return QAAnswer(answer_text=NO_TRANSCRIPT)

    if "who" in q and any(k in q for k in ("attend", "participant", "meeting")):
        names = [p.name for p in extract_attendees(transcript)]
        if not names:
            return QAAnswer(answer_text="The transcript does not list any attendees explicitly.")
        sources = [s for s in (_snippet_for_name(transcript, n) for n in names) if s]
        return QAAnswer(answer_text=f"Attendees mentioned in the transcript: {', '.join(names)}.", sources=sources)

    if "action item" in q or "tasks" in q:
        items = flatten(tasks) if tasks else extract_action_items(transcript)
        if not items:
            return QAAnswer(answer_text="The transcript does not contain any explicit action items.")
        sources = [
            QASource(timestamp=ev.timestamp or extract_timestamp(ev.snippet) or "N/A", snippet=ev.snippet)
            for task in items
            for ev in task.source_evidence or []
        ]
        titles = "; ".join(t.title for t in items if t.title)
        return QAAnswer(answer_text=f"Action items from the transcript: {titles}.", sources=sources)

    if any(k in q for k in ("summary", "recap", "what happened")):
        return QAAnswer(answer_text="The transcript does not include a summary in the available metadata.")
    if q.startswith("when") or "when was" in q:
        return QAAnswer(answer_text="The transcript does not specify the meeting date or time.")
    return QAAnswer(answer_text=NOT_ENOUGH_INFO)


async def answer_from_transcript(
    generator: TextGenerator,
    question: str,
    transcript: str,
    tasks: Optional[List[Task]] = None,
    previous_session_context: Optional[str] = None,
) -> QAAnswer:
    excerpt = relevant_excerpt(transcript, question)
    parts = [
        "Answer the user's question using only the meeting transcript below. If the transcript does not "
        "contain the answer, say so plainly. Cite every fact in `sources` as {timestamp, snippet}.",
        f"Transcript excerpts:\n{excerpt}",
    ]
    if tasks:
        parts.append(f"Current task list (JSON): {dump_tasks(tasks)}")
    if previous_session_context:
        parts.append(f"Context from previous meeting:\n{previous_session_context}")
    parts.append(f'Question: "{question}"')
    parts.append('Return JSON: {"answerText": "...", "sources": [{"timestamp": "...", "snippet": "..."}]}')
    prompt = Prompt(
        name="transcript_qa",
        system="You answer questions about meeting transcripts. Respond with a single JSON object only.",
        user="\n\n".join(parts),
    )
    result = await generator.generate(prompt)
    raw = extract_json_value(result.output, result.text)
    try:
        return QAAnswer.model_validate(raw)
    except ValidationError:
        pass

    record = as_object(raw)
    answer = (
        get_string(record.get("answerText"))
        or get_string(record.get("answer"))
        or get_string(record.get("response"))
        or get_string(record.get("summary"))
    )
    if answer:
        return QAAnswer(answer_text=answer, sources=_normalize_sources(record.get("sources")))
    if get_string(result.text) and raw is None:
        return QAAnswer(answer_text=result.text.strip())

    logger.info("transcript_qa fell back to rule-based answer")
    return rule_based_answer(question, transcript, tasks)
