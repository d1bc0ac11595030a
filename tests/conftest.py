import asyncio
import os
import tempfile
from pathlib import Path

# Must be set before taskwise.app is imported: the module builds an app at import time.
_TMP = Path(tempfile.mkdtemp(prefix="taskwise-tests-"))
os.environ.setdefault("TASKWISE_DB_PATH", str(_TMP / "sessions.db"))
os.environ.setdefault("TASKWISE_LLM_PROVIDER", "none")

import pytest

from taskwise.services.llm import GenerationResult


class FakeGenerator:
    """Scripted TextGenerator keyed by prompt name.

    A response may be a dict/list (returned as parsed output), a str (returned
    as raw text) or a callable taking the prompt.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.prompts = []

    async def generate(self, prompt):
        self.prompts.append(prompt)
        value = self.responses.get(prompt.name)
        if callable(value):
            value = value(prompt)
        if value is None:
            return GenerationResult()
        if isinstance(value, str):
            return GenerationResult(text=value)
        return GenerationResult(output=value)

    def names(self):
        return [p.name for p in self.prompts]

    def prompt(self, name):
        return next(p for p in self.prompts if p.name == name)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def fake():
    return FakeGenerator()
