from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from .config import Settings
from .db import load_prior_session
from .services.dispatcher import Dispatcher
from .services.llm import ProviderGenerator, TextGenerator


@dataclass
class State:
    """Application services shared across requests.

    Attached to FastAPI's app.state. The dispatcher itself is stateless; tests
    swap ``generator`` for a scripted one.
    """

    settings: Settings
    generator: TextGenerator

    @classmethod
    def from_settings(cls, settings: Settings) -> "State":
        return cls(settings=settings, generator=ProviderGenerator(settings))

    def dispatcher(self) -> Dispatcher:
        return Dispatcher(self.generator, session_lookup=load_prior_session, settings=self.settings)


def get_state(request: Request) -> State:  # FastAPI dependency helper
    return request.app.state.state
