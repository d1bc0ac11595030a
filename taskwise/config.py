from __future__ import annotations

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings.

    Values may be provided via environment variables. This keeps configuration
    decoupled from code and simplifies packaging.
    """

    # HTTP
    cors_allow_origins: str = Field("*", description="Comma-separated origins")

    # Text generation
    llm_provider: str = Field("auto", description="auto|openai|groq|none")
    openai_model: str = "gpt-4o-mini"
    groq_model: str = "llama-3.1-70b-versatile"
    openai_api_base: str = "https://api.openai.com/v1"
    groq_api_base: str = "https://api.groq.com/openai/v1"
    llm_timeout_s: int = Field(40, ge=1, le=300)

    # Extraction
    existing_task_context_cap: int = Field(12, ge=6, le=20, description="Max tasks sent to the model when editing")

    # Storage
    db_path: str = Field("taskwise.db", description="SQLite file for sessions")

    class Config:
        env_prefix = "TASKWISE_"
        case_sensitive = False


def load_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
