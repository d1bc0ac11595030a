"""Per-turn routing of a chat message to the routine that answers it.

Routing is an ordered list of ``Rule``s. The first rule whose predicate holds
and whose handler returns a response answers the turn; a handler may return
``None`` to let later rules run. The dispatcher keeps no state between turns:
everything it needs arrives on the ``TurnRequest``, including an echoed
``PendingConfirmation``.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Union

from ..config import Settings
from ..models.chat import IntentResult, PriorSession, TurnRequest, TurnResponse
from ..models.task import Person, Task, TaskLevels
from .confirmation import (
    PendingOutcome,
    delete_task,
    is_confirm_delete,
    is_delete_intent,
    request_confirmation,
    resolve_pending,
)
from .extraction import analyze_meeting, extract_tasks_from_message, refine_tasks
from .intent import (
    CLARIFY_DEFAULT,
    classify_intent,
    is_explicit_knowledge_request,
    is_likely_task_modification,
    needs_target_task,
)
from .llm import TextGenerator
from .matcher import MatchOutcome, find_matches, resolve_match
from .qa import answer_from_transcript
from .rollover import (
    SessionLookup,
    build_previous_session_context,
    load_previous_session,
    reconcile_with_existing,
)
from .task_tree import assign_stable_ids, find_task_by_title

logger = logging.getLogger("app.dispatch")


@dataclass
class TurnContext:
    request: TurnRequest
    intent: Optional[IntentResult] = None
    target: Optional[Task] = None
    previous_session: Optional[PriorSession] = None
    previous_loaded: bool = False

    @property
    def message(self) -> str:
        return self.request.message

    @property
    def tasks(self) -> List[Task]:
        return self.request.existing_tasks

    @property
    def knowledge_eligible(self) -> bool:
        return self.request.has_transcript and not self.request.has_selection


Predicate = Callable[[TurnContext], Union[bool, Awaitable[bool]]]
Handler = Callable[[TurnContext], Awaitable[Optional[TurnResponse]]]


@dataclass
class Rule:
    name: str
    predicate: Predicate
    handler: Handler


def _levels_with_ids(levels: Optional[TaskLevels]) -> Optional[TaskLevels]:
    if levels is None:
        return None
    return TaskLevels(
        light=assign_stable_ids(levels.light),
        medium=assign_stable_ids(levels.medium),
        detailed=assign_stable_ids(levels.detailed),
    )


def _unique_people(people: List[Person]) -> List[Person]:
    by_name: Dict[str, Person] = {}
    for person in people:
        by_name[person.name.lower()] = person
    return list(by_name.values())


class Dispatcher:
    def __init__(
        self,
        generator: TextGenerator,
        session_lookup: Optional[SessionLookup] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.generator = generator
        self.session_lookup = session_lookup
        self.context_cap = settings.existing_task_context_cap if settings else 12
        self.rules: List[Rule] = [
            Rule("meeting_analysis", self._is_meeting_analysis, self._meeting_analysis),
            Rule("pending_confirmation", lambda ctx: ctx.request.pending_confirmation is not None, self._pending),
            Rule("explicit_knowledge", self._is_explicit_knowledge, self._answer_question),
            Rule("routed_knowledge", self._is_routed("knowledge"), self._answer_question),
            Rule("routed_ambiguous", self._is_routed("ambiguous"), self._clarify),
            Rule("target_resolution", self._needs_target, self._resolve_target),
            Rule("delete", lambda ctx: bool(ctx.tasks) and is_delete_intent(ctx.message), self._delete),
            Rule("refinement", lambda ctx: ctx.request.has_selection, self._refine),
            Rule("transcript_follow_up", lambda ctx: ctx.request.has_transcript, self._transcript_follow_up),
            Rule("general_extraction", lambda ctx: True, self._general_extraction),
        ]

    async def handle_turn(self, request: TurnRequest) -> TurnResponse:
        ctx = TurnContext(request=request)
        for rule in self.rules:
            matched = rule.predicate(ctx)
            if inspect.isawaitable(matched):
                matched = await matched
            if not matched:
                continue
            response = await rule.handler(ctx)
            if response is None:
                logger.debug(json.dumps({"route": rule.name, "result": "fall_through"}))
                continue
            response.route = rule.name
            logger.info(
                json.dumps({
                    "route": rule.name,
                    "tasks_in": len(request.existing_tasks),
                    "tasks_out": len(response.tasks),
                    "intent": ctx.intent.intent if ctx.intent else None,
                })
            )
            return response
        # general_extraction always matches and always answers
        raise RuntimeError("no dispatch rule answered the turn")

    # ----------------------------- Shared steps -----------------------------
    async def intent(self, ctx: TurnContext) -> IntentResult:
        if ctx.intent is None:
            ctx.intent = await classify_intent(
                self.generator, ctx.message, ctx.request.has_transcript, ctx.request.has_tasks
            )
        return ctx.intent

    async def previous_session(self, ctx: TurnContext) -> Optional[PriorSession]:
        if not ctx.previous_loaded:
            ctx.previous_session = await load_previous_session(self.session_lookup, ctx.request.previous_meeting_id)
            ctx.previous_loaded = True
        return ctx.previous_session

    def _unchanged(self, ctx: TurnContext, text: str, **extra) -> TurnResponse:
        return TurnResponse(chat_response_text=text, tasks=assign_stable_ids(ctx.tasks), **extra)

    # ------------------------------ Predicates ------------------------------
    def _is_meeting_analysis(self, ctx: TurnContext) -> bool:
        req = ctx.request
        return req.has_transcript and (req.message == req.source_meeting_transcript or req.is_first_message)

    def _is_explicit_knowledge(self, ctx: TurnContext) -> bool:
        return ctx.knowledge_eligible and is_explicit_knowledge_request(ctx.message)

    def _is_routed(self, intent: str) -> Predicate:
        async def predicate(ctx: TurnContext) -> bool:
            if not ctx.knowledge_eligible:
                return False
            return (await self.intent(ctx)).intent == intent

        return predicate

    def _needs_target(self, ctx: TurnContext) -> bool:
        return bool(ctx.tasks) and not ctx.request.has_selection and needs_target_task(ctx.message)

    # ------------------------------- Handlers -------------------------------
    async def _meeting_analysis(self, ctx: TurnContext) -> TurnResponse:
        transcript = ctx.request.source_meeting_transcript or ""
        analysis = await analyze_meeting(self.generator, transcript)

        known = list(ctx.tasks)
        prior = await self.previous_session(ctx)
        if prior is not None:
            known_ids = {t.id for t in known if t.id}
            known.extend(t for t in prior.tasks if not t.id or t.id not in known_ids)
        light = assign_stable_ids(reconcile_with_existing(analysis.all_task_levels.light, known))
        # the caller's unclaimed tasks ride along unchanged; prior-session ones do not
        claimed = {t.id for t in light}
        carried = [t for t in ctx.tasks if not t.id or t.id not in claimed]
        tasks = light + assign_stable_ids(carried)

        levels = analysis.all_task_levels
        return TurnResponse(
            chat_response_text=analysis.chat_response_text,
            tasks=tasks,
            session_title=analysis.session_title,
            all_task_levels=TaskLevels(
                light=light,
                medium=assign_stable_ids(levels.medium),
                detailed=assign_stable_ids(levels.detailed),
            ),
            people=_unique_people(analysis.attendees + analysis.mentioned_people),
            meeting_summary=analysis.meeting_summary,
            key_moments=analysis.key_moments,
        )

    async def _pending(self, ctx: TurnContext) -> Optional[TurnResponse]:
        pending = ctx.request.pending_confirmation
        resolution = resolve_pending(ctx.message, pending, ctx.tasks)
        if resolution.outcome is PendingOutcome.STALE:
            logger.info(json.dumps({"route": "pending_confirmation", "result": "stale", "task_id": pending.task_id}))
            return None
        return TurnResponse(
            chat_response_text=resolution.chat_response_text,
            tasks=assign_stable_ids(resolution.tasks),
        )

    async def _answer_question(self, ctx: TurnContext) -> TurnResponse:
        answer = await answer_from_transcript(
            self.generator, ctx.message, ctx.request.source_meeting_transcript or "", ctx.tasks
        )
        return self._unchanged(ctx, answer.answer_text, qa_answer=answer)

    async def _clarify(self, ctx: TurnContext) -> TurnResponse:
        intent = await self.intent(ctx)
        return self._unchanged(ctx, intent.clarifying_question or CLARIFY_DEFAULT)

    async def _resolve_target(self, ctx: TurnContext) -> Optional[TurnResponse]:
        resolution = resolve_match(find_matches(ctx.message, ctx.tasks))
        if resolution.outcome is MatchOutcome.NO_TOKENS:
            return self._unchanged(ctx, "Which task should I update? Please mention part of the task title.")
        if resolution.outcome is MatchOutcome.NO_MATCH:
            return self._unchanged(ctx, "I couldn't find a matching task. Can you specify the task title?")
        if resolution.outcome is MatchOutcome.AMBIGUOUS:
            return self._unchanged(
                ctx, f"I found multiple tasks that match. Which one did you mean: {resolution.option_list()}?"
            )
        ctx.target = resolution.target
        return None

    async def _delete(self, ctx: TurnContext) -> TurnResponse:
        tasks = assign_stable_ids(ctx.tasks)
        resolution = resolve_match(find_matches(ctx.message, tasks))
        if resolution.outcome in (MatchOutcome.NO_TOKENS, MatchOutcome.NO_MATCH):
            return self._unchanged(ctx, "Which task should I delete? Please mention part of the task title.")
        if resolution.outcome is MatchOutcome.AMBIGUOUS:
            return self._unchanged(
                ctx, f"I found multiple tasks that match. Which one should I delete: {resolution.option_list()}?"
            )
        if not is_confirm_delete(ctx.message):
            text, pending = request_confirmation(resolution.target)
            return TurnResponse(chat_response_text=text, tasks=tasks, pending_confirmation=pending)
        text, remaining = delete_task(tasks, resolution.target)
        return TurnResponse(chat_response_text=text, tasks=remaining)

    async def _refine(self, ctx: TurnContext) -> TurnResponse:
        req = ctx.request
        context_task = find_task_by_title(ctx.tasks, req.context_task_title) if req.context_task_title else None
        result = await refine_tasks(
            self.generator,
            ctx.message,
            ctx.tasks,
            context_task=context_task,
            tasks_to_refine=req.selected_tasks or [],
        )
        if not result.updated_tasks and ctx.tasks:
            logger.warning("refine_tasks returned no tasks; keeping the current list")
            return self._unchanged(ctx, "I couldn't apply that refinement. Could you rephrase it?")
        return TurnResponse(chat_response_text=result.chat_response_text, tasks=assign_stable_ids(result.updated_tasks))

    async def _transcript_follow_up(self, ctx: TurnContext) -> TurnResponse:
        if ctx.tasks and is_likely_task_modification(ctx.message):
            return await self._extract(ctx)
        prior = await self.previous_session(ctx)
        answer = await answer_from_transcript(
            self.generator,
            ctx.message,
            ctx.request.source_meeting_transcript or "",
            ctx.tasks,
            previous_session_context=build_previous_session_context(prior),
        )
        return self._unchanged(ctx, answer.answer_text, qa_answer=answer)

    async def _general_extraction(self, ctx: TurnContext) -> TurnResponse:
        return await self._extract(ctx)

    async def _extract(self, ctx: TurnContext) -> TurnResponse:
        req = ctx.request
        result = await extract_tasks_from_message(
            self.generator,
            req.message,
            existing_tasks=ctx.tasks,
            requested_detail_level=req.requested_detail_level,
            is_first_message=req.is_first_message,
            focus_task=ctx.target,
            context_cap=self.context_cap,
        )
        return TurnResponse(
            chat_response_text=result.chat_response_text,
            tasks=assign_stable_ids(result.tasks),
            session_title=result.session_title,
            all_task_levels=_levels_with_ids(result.all_task_levels),
        )
