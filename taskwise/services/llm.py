from __future__ import annotations

import asyncio
import json
import logging
import os
import ssl
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple
from urllib import request, error

from ..config import Settings

logger = logging.getLogger("app.llm")


@dataclass
class Prompt:
    name: str
    system: str
    user: str
    temperature: float = 0.2
    json_mode: bool = True

    def messages(self) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.user},
        ]


@dataclass
class GenerationResult:
    output: Any = None
    text: Optional[str] = None


class TextGenerator(Protocol):
    async def generate(self, prompt: Prompt) -> GenerationResult: ...


def _try_parse_json(s: Optional[str]) -> Any:
    """Parse the whole string, else the first {...} block, else the first [...] block."""
    if not s:
        return None
    s = s.strip()
    if not s:
        return None
    try:
        return json.loads(s)
    except ValueError:
        pass
    for open_ch, close_ch in (("{", "}"), ("[", "]")):
        start = s.find(open_ch)
        end = s.rfind(close_ch)
        if start != -1 and end > start:
            try:
                return json.loads(s[start : end + 1])
            except ValueError:
                continue
    return None


def extract_json_value(output: Any, text: Optional[str]) -> Any:
    data = output
    if isinstance(data, str):
        parsed = _try_parse_json(data)
        data = parsed if parsed is not None else data
    if data is None:
        data = _try_parse_json(text)
    return data


def as_object(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def get_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _http_post(url: str, headers: Dict[str, str], data: Dict[str, Any], timeout: int = 40) -> Dict[str, Any]:
    body = json.dumps(data).encode("utf-8")
    hdrs = {"User-Agent": "taskwise/1.0 python-urllib", **headers}
    req = request.Request(url, data=body, headers=hdrs, method="POST")
    if os.getenv("TASKWISE_SSL_NO_VERIFY"):
        ctx = ssl._create_unverified_context()  # type: ignore[attr-defined]
    else:
        ctx = ssl.create_default_context()
    try:
        with request.urlopen(req, context=ctx, timeout=timeout) as resp:
            raw = resp.read()
            return json.loads(raw.decode("utf-8"))
    except error.HTTPError as e:
        try:
            payload = e.read().decode("utf-8")
        except Exception:
            payload = str(e)
        raise RuntimeError(f"HTTP {e.code}: {payload}")


class ProviderGenerator:
    """Chat-completions backed generator (OpenAI or Groq, OpenAI-compatible API).

    Provider selection follows ``settings.llm_provider``: openai|groq|auto|none.
    Transport failures are logged and produce an empty result.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def provider_and_model(self) -> Tuple[str, Optional[str]]:
        provider = (self.settings.llm_provider or "auto").lower()
        model = None
        if provider == "openai":
            model = self.settings.openai_model
        elif provider == "groq":
            model = self.settings.groq_model
        return provider, model

    def _call(self, base: str, api_key: str, model: str, prompt: Prompt) -> Optional[str]:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": prompt.messages(),
            "temperature": prompt.temperature,
        }
        if prompt.json_mode:
            payload["response_format"] = {"type": "json_object"}
        try:
            res = _http_post(
                f"{base.rstrip('/')}/chat/completions",
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {api_key}",
                },
                data=payload,
                timeout=self.settings.llm_timeout_s,
            )
            content = (res.get("choices") or [{}])[0].get("message", {}).get("content")
        except Exception as e:
            logger.warning(json.dumps({"prompt": prompt.name, "model": model, "error": str(e)}))
            return None
        # refusals and tool calls come back with non-string content
        if not isinstance(content, str):
            return None
        return content.strip() or None

    def _openai_call(self, prompt: Prompt) -> Optional[str]:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            return None
        return self._call(self.settings.openai_api_base, api_key, self.settings.openai_model, prompt)

    def _groq_call(self, prompt: Prompt) -> Optional[str]:
        api_key = os.getenv("GROQ_API_KEY")
        if not api_key:
            return None
        return self._call(self.settings.groq_api_base, api_key, self.settings.groq_model, prompt)

    def complete(self, prompt: Prompt) -> Optional[str]:
        provider, _ = self.provider_and_model()
        if provider == "none":
            return None
        if provider == "openai":
            return self._openai_call(prompt)
        if provider == "groq":
            return self._groq_call(prompt)
        return self._openai_call(prompt) or self._groq_call(prompt)

    async def generate(self, prompt: Prompt) -> GenerationResult:
        text = await asyncio.to_thread(self.complete, prompt)
        logger.debug(json.dumps({"prompt": prompt.name, "chars": len(text or "")}))
        return GenerationResult(output=None, text=text)

    def diagnostics(self) -> Dict[str, Any]:
        provider, model = self.provider_and_model()
        return {
            "provider": provider,
            "model": model,
            "openai_key": bool(os.getenv("OPENAI_API_KEY")),
            "groq_key": bool(os.getenv("GROQ_API_KEY")),
        }
