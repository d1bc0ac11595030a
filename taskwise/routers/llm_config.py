from __future__ import annotations

import os
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..state import State, get_state

PROVIDERS = {"auto", "openai", "groq", "none"}


class LlmConfigRequest(BaseModel):
    provider: Optional[str] = Field(default=None, description="auto|openai|groq|none")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_model: Optional[str] = Field(default=None, description="OpenAI model id")
    groq_api_key: Optional[str] = Field(default=None, description="Groq API key")
    groq_model: Optional[str] = Field(default=None, description="Groq model id")


router = APIRouter(tags=["llm-config"])


def _set_key(name: str, value: Optional[str]) -> None:
    if value is None:
        return
    value = value.strip()
    if value:
        os.environ[name] = value
    else:
        os.environ.pop(name, None)


def _diagnostics(state: State) -> Dict[str, Any]:
    generator = state.generator
    info = generator.diagnostics() if hasattr(generator, "diagnostics") else {"provider": type(generator).__name__}
    return {"ok": True, **info}


@router.get("/llm_config")
def v1_llm_config_get(state: State = Depends(get_state)) -> Dict[str, Any]:
    return _diagnostics(state)


@router.post("/llm_config")
def v1_llm_config(payload: LlmConfigRequest, state: State = Depends(get_state)) -> Dict[str, Any]:
    settings = state.settings
    if payload.provider is not None:
        provider = payload.provider.strip().lower() or "auto"
        if provider not in PROVIDERS:
            raise HTTPException(status_code=400, detail=f"Unknown provider {provider!r}")
        settings.llm_provider = provider
    if payload.openai_model and payload.openai_model.strip():
        settings.openai_model = payload.openai_model.strip()
    if payload.groq_model and payload.groq_model.strip():
        settings.groq_model = payload.groq_model.strip()
    _set_key("OPENAI_API_KEY", payload.openai_api_key)
    _set_key("GROQ_API_KEY", payload.groq_api_key)
    return _diagnostics(state)
