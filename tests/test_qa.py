from conftest import FakeGenerator, run
from taskwise.models.task import SourceEvidence, Task
from taskwise.services.qa import NOT_ENOUGH_INFO, NO_TRANSCRIPT, answer_from_transcript, rule_based_answer

TRANSCRIPT = """[00:01] Alice: Kickoff for the pricing project.
[00:30] Bob: I'll update the pricing page by Thursday.
"""


def test_valid_model_answer_is_returned():
    fake = FakeGenerator({"transcript_qa": {
        "answerText": "Bob owns the pricing page.",
        "sources": [{"timestamp": "00:30", "snippet": "I'll update the pricing page"}],
    }})
    answer = run(answer_from_transcript(fake, "Who owns pricing?", TRANSCRIPT, previous_session_context="Prev"))
    assert answer.answer_text == "Bob owns the pricing page."
    assert answer.sources[0].timestamp == "00:30"
    assert "Context from previous meeting:\nPrev" in fake.prompt("transcript_qa").user


def test_scalar_answer_with_loose_sources():
    fake = FakeGenerator({"transcript_qa": {"answer": "Thursday.", "sources": [{"quote": "by Thursday at 00:30"}, "x"]}})
    answer = run(answer_from_transcript(fake, "When is it due?", TRANSCRIPT))
    assert answer.answer_text == "Thursday."
    assert [(s.timestamp, s.snippet) for s in answer.sources] == [("00:30", "by Thursday at 00:30")]


def test_plain_text_answer():
    fake = FakeGenerator({"transcript_qa": "Bob is updating the page."})
    answer = run(answer_from_transcript(fake, "What is Bob doing?", TRANSCRIPT))
    assert answer.answer_text == "Bob is updating the page."
    assert answer.sources == []


def test_rule_based_attendees_when_model_silent():
    answer = run(answer_from_transcript(FakeGenerator(), "Who attended the meeting?", TRANSCRIPT))
    assert answer.answer_text == "Attendees mentioned in the transcript: Alice, Bob."
    assert answer.sources[1].timestamp == "00:30"


def test_rule_based_action_items_prefer_tasks():
    tasks = [Task(title="Update pricing page", source_evidence=[SourceEvidence(snippet="I'll update it", timestamp="00:30")])]
    answer = rule_based_answer("What are the action items?", TRANSCRIPT, tasks)
    assert answer.answer_text == "Action items from the transcript: Update pricing page."
    assert answer.sources[0].snippet == "I'll update it"


def test_rule_based_fixed_answers():
    assert rule_based_answer("Give me a recap", TRANSCRIPT).answer_text.startswith("The transcript does not include a summary")
    assert rule_based_answer("when was this?", TRANSCRIPT).answer_text.startswith("The transcript does not specify")
    assert rule_based_answer("Why blue?", TRANSCRIPT).answer_text == NOT_ENOUGH_INFO
    assert rule_based_answer("Why blue?", "").answer_text == NO_TRANSCRIPT
