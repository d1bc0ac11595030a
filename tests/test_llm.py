from taskwise.config import Settings
from taskwise.services.llm import Prompt, ProviderGenerator, extract_json_value, get_string

from conftest import run


def test_extract_json_value_prefers_output():
    assert extract_json_value({"a": 1}, '{"a": 2}') == {"a": 1}


def test_extract_json_value_parses_string_output():
    assert extract_json_value('{"a": 1}', None) == {"a": 1}


def test_extract_json_value_from_wrapped_text():
    assert extract_json_value(None, 'Here you go:\n```json\n{"tasks": []}\n```') == {"tasks": []}
    assert extract_json_value(None, "list: [1, 2]") == [1, 2]
    assert extract_json_value(None, "nothing here") is None
    assert extract_json_value(None, None) is None


def test_get_string():
    assert get_string("  hi ") == "hi"
    assert get_string("   ") is None
    assert get_string(3) is None


def test_provider_none_returns_empty_result(monkeypatch):
    generator = ProviderGenerator(Settings(llm_provider="none"))
    result = run(generator.generate(Prompt(name="extract_tasks", system="s", user="u")))
    assert result.output is None and result.text is None
    assert generator.diagnostics()["provider"] == "none"


def test_provider_auto_without_keys_returns_empty(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    generator = ProviderGenerator(Settings(llm_provider="auto"))
    assert generator.complete(Prompt(name="x", system="s", user="u")) is None


def test_provider_transport_error_is_swallowed(monkeypatch):
    import taskwise.services.llm as llm

    def boom(*args, **kwargs):
        raise RuntimeError("HTTP 500: upstream")

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(llm, "_http_post", boom)
    generator = ProviderGenerator(Settings(llm_provider="openai"))
    assert generator.complete(Prompt(name="x", system="s", user="u")) is None


def test_provider_reads_message_content(monkeypatch):
    import taskwise.services.llm as llm

    seen = {}

    def fake_post(url, headers, data, timeout=40):
        seen.update(url=url, data=data)
        return {"choices": [{"message": {"content": ' {"ok": true} '}}]}

    monkeypatch.setenv("GROQ_API_KEY", "gsk-test")
    monkeypatch.setattr(llm, "_http_post", fake_post)
    generator = ProviderGenerator(Settings(llm_provider="groq"))
    assert generator.complete(Prompt(name="x", system="s", user="u")) == '{"ok": true}'
    assert seen["url"].endswith("/chat/completions")
    assert seen["data"]["response_format"] == {"type": "json_object"}


def test_provider_malformed_replies_yield_empty_result(monkeypatch):
    import taskwise.services.llm as llm

    replies = [{"choices": []}, {"choices": [{"message": {"content": None}}]}, {"choices": [{"message": None}]}]

    def fake_post(url, headers, data, timeout=40):
        return replies.pop(0)

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(llm, "_http_post", fake_post)
    generator = ProviderGenerator(Settings(llm_provider="openai"))
    for _ in range(3):
        result = run(generator.generate(Prompt(name="x", system="s", user="u")))
        assert result.output is None and result.text is None
