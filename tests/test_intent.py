import pytest

from conftest import FakeGenerator, run
from taskwise.services.intent import (
    CLARIFY_DEFAULT,
    classify_intent,
    fallback_intent,
    is_explicit_knowledge_request,
    is_likely_task_modification,
    needs_target_task,
)


@pytest.mark.parametrize(
    "message,has_transcript,expected",
    [
        ("what did Sam say about pricing?", False, "action"),
        ("can you update the deadline task?", True, "action"),
        ("please add the action items to my list", True, "action"),
        ("add a task to email finance", True, "action"),
        ("who owns the budget?", True, "knowledge"),
        ("did we agree on the launch date", True, "knowledge"),
        ("hmm interesting", True, "ambiguous"),
    ],
)
def test_fallback_intent(message, has_transcript, expected):
    assert fallback_intent(message, has_transcript).intent == expected


def test_fallback_ambiguous_carries_question():
    assert fallback_intent("ok then", True).clarifying_question == CLARIFY_DEFAULT


def test_classify_uses_router_output():
    fake = FakeGenerator({"chat_intent_router": {"intent": "knowledge", "confidence": 0.9, "reasoning": "asks"}})
    result = run(classify_intent(fake, "add a task", True, True))
    assert result.intent == "knowledge"
    assert fake.prompt("chat_intent_router").temperature == 0.0


def test_classify_reads_json_from_raw_text():
    fake = FakeGenerator({"chat_intent_router": 'Sure: {"intent": "ambiguous", "clarifyingQuestion": "Which task?"}'})
    result = run(classify_intent(fake, "update it", True, True))
    assert result.intent == "ambiguous"
    assert result.clarifying_question == "Which task?"


@pytest.mark.parametrize("bad", [None, "not json", {"intent": "chitchat"}, {"intent": "action", "confidence": 4}])
def test_classify_falls_back_on_invalid_output(bad):
    fake = FakeGenerator({"chat_intent_router": bad})
    result = run(classify_intent(fake, "who attended?", True, False))
    assert result.intent == "knowledge"


def test_cue_predicates():
    assert is_explicit_knowledge_request("Give me a recap of the meeting")
    assert not is_explicit_knowledge_request("add a task")
    assert needs_target_task("change the priority of the launch task")
    assert not needs_target_task("remove the auth task")
    assert not needs_target_task("pick a movie for the dueling banjos night")
    assert is_likely_task_modification("mark the docs task as done")
    assert is_likely_task_modification("could you add a follow up?")
    assert not is_likely_task_modification("why did we pick Postgres?")
