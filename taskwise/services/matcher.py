"""Resolve free-text references ("the auth task") to nodes of a task forest.

Scoring is token overlap: the share of query tokens found in a task's title and
description. Candidates within ``TIE_BAND`` of the best score are treated as
equally likely, and the caller asks the user instead of picking one.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional

from ..models.task import Task
from .task_tree import flatten
from .text import normalize_text, tokenize

TIE_BAND = 0.15
MAX_OPTIONS = 3


@dataclass
class MatchCandidate:
    task: Task
    score: float


@dataclass
class MatchResult:
    tokens: List[str]
    candidates: List[MatchCandidate] = field(default_factory=list)


class MatchOutcome(str, enum.Enum):
    NO_TOKENS = "no_tokens"
    NO_MATCH = "no_match"
    AMBIGUOUS = "ambiguous"
    RESOLVED = "resolved"


@dataclass
class Resolution:
    outcome: MatchOutcome
    target: Optional[Task] = None
    options: List[Task] = field(default_factory=list)

    def option_list(self) -> str:
        return ", ".join(f'"{t.title}"' for t in self.options)


def score_task(task: Task, tokens: List[str]) -> float:
    if not tokens:
        return 0.0
    haystack = normalize_text(f"{task.title} {task.description or ''}")
    if not haystack:
        return 0.0
    matched = sum(1 for tok in tokens if tok in haystack)
    return matched / len(tokens)


def find_matches(message: str, tasks: List[Task]) -> MatchResult:
    tokens = tokenize(message)
    if not tokens:
        return MatchResult(tokens=[])
    scored = [MatchCandidate(task=t, score=score_task(t, tokens)) for t in flatten(tasks)]
    candidates = sorted((c for c in scored if c.score > 0), key=lambda c: c.score, reverse=True)
    return MatchResult(tokens=tokens, candidates=candidates)


def tied_candidates(result: MatchResult) -> List[MatchCandidate]:
    if not result.candidates:
        return []
    floor = result.candidates[0].score - TIE_BAND - 1e-9
    return [c for c in result.candidates if c.score >= floor]


def resolve_match(result: MatchResult) -> Resolution:
    if not result.tokens:
        return Resolution(MatchOutcome.NO_TOKENS)
    if not result.candidates:
        return Resolution(MatchOutcome.NO_MATCH)
    tied = tied_candidates(result)
    if len(tied) > 1:
        return Resolution(MatchOutcome.AMBIGUOUS, options=[c.task for c in tied[:MAX_OPTIONS]])
    return Resolution(MatchOutcome.RESOLVED, target=tied[0].task)
