from __future__ import annotations

import json
import logging
import re

from pydantic import ValidationError

from ..models.chat import IntentResult
from .llm import Prompt, TextGenerator, extract_json_value
from .text import normalize_text

logger = logging.getLogger("app.intent")

CLARIFY_DEFAULT = "Do you want an answer from the transcript, or should I update the task list?"

_QUESTION_START = re.compile(r"^(who|what|when|where|why|how|did|do|does|is|are|can|could|should|would)\b")
_DIRECTIVE = re.compile(r"(can you|could you|would you|please|let's|lets|we should|we need)")
_ACTION_VERBS = re.compile(
    r"\b(add|create|update|change|edit|delete|remove|assign|reassign|due|deadline|priority|"
    r"merge|split|break down|simplify)"
)
_KNOWLEDGE_CUES = re.compile(
    r"(transcript|meeting content|meeting details|summary|recap|key decisions|key moments|"
    r"what did|who was|who attended|when was|how productive|productivity)"
)
_TARGET_VERBS = re.compile(
    r"\b(update|change|edit|rename|assign|reassign|due|deadline|priority|move|merge|split|"
    r"break down|simplify)\b"
)
_MODIFICATION_SIGNALS = (
    "add", "create", "update", "change", "edit", "rename", "reword", "remove", "delete",
    "assign", "reassign", "due", "deadline", "priority", "merge", "split", "break down",
    "simplify", "complete", "finish", "done", "mark", "status",
)
_TASK_WORDS = re.compile(r"task|tasks|action item|action items|todo|to-do|follow up|next step")

ROUTER_SYSTEM = "You route meeting-chat messages. Respond with a single JSON object only."
ROUTER_USER = """Decide whether the user wants:
- "knowledge": ask about meeting content or past discussion.
- "action": create/update/delete tasks or change the task list.
- "ambiguous": not enough detail to proceed safely; ask a clarifying question.

Context: hasTranscript={has_transcript}, hasTasks={has_tasks}

Rules:
1) Questions about what/why/who/when, or about what a speaker said, are "knowledge".
2) Requests to add, update, delete, assign or change tasks are "action".
3) If both are present, prefer "action" only when the command is explicit; otherwise "ambiguous".
4) If hasTranscript is false, default to "action".
5) If the command is underspecified (e.g. "update the task"), choose "ambiguous" and ask a question.

User message:
"{message}"

Return JSON: {{"intent": "knowledge"|"action"|"ambiguous", "confidence": 0.0-1.0,
"reasoning": "one sentence", "clarifyingQuestion": "only if ambiguous"}}"""


def is_question(message: str) -> bool:
    stripped = message.strip()
    return stripped.endswith("?") or bool(_QUESTION_START.match(stripped.lower()))


def is_directive(message: str) -> bool:
    return bool(_DIRECTIVE.search(message.lower()))


def has_action_verbs(message: str) -> bool:
    return bool(_ACTION_VERBS.search(normalize_text(message)))


def is_explicit_knowledge_request(message: str) -> bool:
    return bool(_KNOWLEDGE_CUES.search(message.lower()))


def needs_target_task(message: str) -> bool:
    return bool(_TARGET_VERBS.search(normalize_text(message)))


def is_likely_task_modification(message: str) -> bool:
    """Action-shaped follow-up (not a bare question) about the task list."""
    normalized = message.strip().lower()
    question = is_question(message)
    if question and not is_directive(message):
        return False
    if any(signal in normalized for signal in _MODIFICATION_SIGNALS):
        return True
    return bool(_TASK_WORDS.search(normalized)) and not question


def fallback_intent(message: str, has_transcript: bool) -> IntentResult:
    if not has_transcript:
        return IntentResult(intent="action", confidence=0.6)
    question = is_question(message)
    if question and is_directive(message):
        return IntentResult(intent="action", confidence=0.6)
    if has_action_verbs(message) and not question:
        return IntentResult(intent="action", confidence=0.6)
    if question:
        return IntentResult(intent="knowledge", confidence=0.6)
    return IntentResult(intent="ambiguous", confidence=0.4, clarifying_question=CLARIFY_DEFAULT)


async def classify_intent(
    generator: TextGenerator,
    message: str,
    has_transcript: bool,
    has_tasks: bool,
) -> IntentResult:
    prompt = Prompt(
        name="chat_intent_router",
        system=ROUTER_SYSTEM,
        user=ROUTER_USER.format(
            message=message,
            has_transcript=str(has_transcript).lower(),
            has_tasks=str(has_tasks).lower(),
        ),
        temperature=0.0,
    )
    result = await generator.generate(prompt)
    raw = extract_json_value(result.output, result.text)
    try:
        return IntentResult.model_validate(raw)
    except ValidationError:
        routed = fallback_intent(message, has_transcript)
        logger.info(json.dumps({"intent": routed.intent, "source": "fallback"}))
        return routed
