from conftest import FakeGenerator, run
from taskwise.models.task import Task
from taskwise.services.extraction import (
    analyze_meeting,
    extract_tasks_from_message,
    merge_scoped_updates,
    refine_tasks,
    rewrite_task_titles,
    select_task_context,
)

TRANSCRIPT = """[00:01] Alice: Thanks for joining.
[00:20] Bob: I'll draft the hiring plan by Monday.
[00:45] Carol: We need to renew the office lease.
"""

NAMES = [
    "Order laptops", "Plan offsite", "Review roadmap", "Hire recruiter", "Update handbook",
    "Audit licences", "Prepare demo", "Clean backlog", "Refresh website", "Rotate secrets",
    "Archive wiki", "Survey staff", "Book flights", "Train support", "Send invoice payment",
]


def _existing():
    return [Task(id=f"t{i}", title=name, priority="high" if i == 3 else "medium") for i, name in enumerate(NAMES)]


def test_analyze_meeting_uses_model_levels():
    fake = FakeGenerator({
        "analyze_meeting": {
            "chatResponseText": "Found 2 items.",
            "sessionTitle": "Ops sync",
            "meetingSummary": "Hiring and lease.",
            "allTaskLevels": {
                "light": [{"title": "Draft hiring plan", "assigneeName": "Bob"}, {"title": "Renew office lease"}],
                "medium": [
                    {"title": "Renew office lease", "subtasks": [{"title": "Call landlord"}]},
                    {"title": "Draft hiring plan", "subtasks": [{"title": "List open roles"}]},
                ],
            },
            "attendees": [{"name": "Alice"}, {"name": "Bob", "title": "Eng lead"}],
            "mentionedPeople": ["Landlord Lee"],
            "keyMoments": [{"timestamp": "00:20", "description": "Hiring plan assigned"}],
        }
    })
    analysis = run(analyze_meeting(fake, TRANSCRIPT))
    levels = analysis.all_task_levels
    assert [t.title for t in levels.light] == ["Draft hiring plan", "Renew office lease"]
    assert [t.title for t in levels.medium] == ["Draft hiring plan", "Renew office lease"]
    assert levels.medium[0].subtasks[0].title == "List open roles"
    assert levels.detailed == levels.medium
    assert analysis.session_title == "Ops sync"
    assert [p.name for p in analysis.attendees] == ["Alice", "Bob"]
    assert analysis.mentioned_people[0].role == "mentioned"
    assert analysis.key_moments[0].timestamp == "00:20"
    assert fake.names().count("rewrite_task_titles") == 3


def test_analyze_meeting_falls_back_to_transcript_heuristics():
    analysis = run(analyze_meeting(FakeGenerator(), TRANSCRIPT))
    assert [t.title for t in analysis.all_task_levels.light] == [
        "Draft the hiring plan by Monday",
        "Renew the office lease",
    ]
    assert [p.name for p in analysis.attendees] == ["Alice", "Bob", "Carol"]
    assert analysis.chat_response_text.startswith("I analyzed the meeting")


def test_rewrite_task_titles_by_path():
    tasks = [Task(title="the thing about docs", subtasks=[Task(title="outline stuff")]), Task(title="Email Sam")]
    fake = FakeGenerator({"rewrite_task_titles": {"tasks": [
        {"path": "0", "title": "Write API docs"},
        {"path": "0.0", "title": "Outline doc sections"},
        {"path": "1", "title": "1."},
    ]}})
    out = run(rewrite_task_titles(fake, tasks, "docs"))
    assert out[0].title == "Write API docs"
    assert out[0].subtasks[0].title == "Outline doc sections"
    assert out[1].title == "Email Sam"


def test_rewrite_task_titles_returns_input_on_failure():
    class Broken:
        async def generate(self, prompt):
            raise RuntimeError("down")

    tasks = [Task(title="Email Sam")]
    assert run(rewrite_task_titles(Broken(), tasks, "x")) is tasks


def test_new_list_gets_three_levels():
    fake = FakeGenerator({"extract_tasks": {
        "chatResponseText": "Here is a plan.",
        "sessionTitle": "Garden",
        "allTaskLevels": {
            "light": [{"title": "Plant tomatoes"}],
            "medium": [{"title": "Plant tomatoes", "subtasks": [{"title": "Buy seedlings"}]}],
            "detailed": [{"title": "Plant tomatoes", "subtasks": [{"title": "Buy seedlings", "subtasks": [{"title": "Visit nursery"}]}]}],
        },
    }})
    result = run(extract_tasks_from_message(fake, "help me grow tomatoes in the garden this weekend", is_first_message=True))
    assert [t.title for t in result.tasks] == ["Plant tomatoes"]
    assert result.tasks[0].subtasks[0].title == "Buy seedlings"
    assert result.all_task_levels.detailed[0].subtasks[0].subtasks[0].title == "Visit nursery"
    assert result.session_title == "Garden"
    assert "sessionTitle" in fake.prompt("extract_tasks").user


def test_short_goal_is_broken_down():
    fake = FakeGenerator({"extract_tasks": {
        "tasks": [{"title": "Bake a cake"}],
        "allTaskLevels": {
            "light": [{"title": "Bake a cake"}],
            "detailed": [{"title": "Buy flour"}, {"title": "Mix batter"}, {"title": "Bake for 30 minutes"}],
        },
    }})
    result = run(extract_tasks_from_message(fake, "bake a cake"))
    assert "step-by-step" in fake.prompt("extract_tasks").user
    assert len(result.tasks) == 3


def test_empty_output_for_new_list_uses_message():
    result = run(extract_tasks_from_message(FakeGenerator(), "Renew passport before June"))
    assert [t.title for t in result.tasks] == ["Renew passport before June"]


def test_modification_keeps_existing_when_model_returns_nothing():
    existing = [Task(id="a", title="Draft report")]
    result = run(extract_tasks_from_message(FakeGenerator({"extract_tasks": "garbage"}), "make it shorter", existing))
    assert result.tasks == existing


def test_modification_under_cap_replaces_list():
    existing = [Task(id="a", title="Draft report"), Task(id="b", title="Email team")]
    fake = FakeGenerator({"extract_tasks": {"tasks": [
        {"id": "a", "title": "Draft quarterly report"},
        {"id": "b", "title": "Email team"},
        {"title": "Book review meeting"},
    ]}})
    result = run(extract_tasks_from_message(fake, "add a task to book a review meeting", existing))
    assert [t.id for t in result.tasks] == ["a", "b", None]
    assert "rewrite_task_titles" not in fake.names()


def test_over_cap_sends_scoped_subset_and_merges_back():
    existing = _existing()
    fake = FakeGenerator({"extract_tasks": {"tasks": [{"id": "t14", "title": "Settle vendor invoice"}]}})
    result = run(extract_tasks_from_message(fake, "rename invoice payment to settle vendor invoice", existing))

    user = fake.prompt("extract_tasks").user
    assert "Send invoice payment" in user
    assert "Book flights" not in user
    assert len(result.tasks) == len(existing)
    assert result.tasks[14].title == "Settle vendor invoice"
    assert [t.id for t in result.tasks] == [t.id for t in existing]
    assert result.tasks[3].priority == "high"


def test_select_task_context_ranks_by_relevance():
    scoped, keys, trimmed = select_task_context(_existing(), "invoice payment", 12)
    assert trimmed
    assert len(scoped) == 12
    assert scoped[0].id == "t14"
    assert "id:t14" in keys and "id:t13" not in keys


def test_merge_scoped_updates_drops_unreturned_on_delete():
    full = [Task(id="a", title="Alpha"), Task(id="b", title="Beta"), Task(id="c", title="Gamma")]
    merged = merge_scoped_updates(full, [Task(id="a", title="Alpha")], {"id:a", "id:b"}, "delete beta")
    assert [t.id for t in merged] == ["a", "c"]


def test_merge_scoped_updates_appends_new_tasks():
    full = [Task(id="a", title="Alpha")]
    merged = merge_scoped_updates(full, [Task(title="Delta")], {"id:a"}, "add delta")
    assert [t.title for t in merged] == ["Alpha", "Delta"]


def test_refine_tasks_returns_full_list():
    full = [Task(id="a", title="Launch beta"), Task(id="b", title="Write FAQ")]
    fake = FakeGenerator({"refine_tasks": {
        "chatResponseText": "Broke it down.",
        "updatedTasks": [
            {"id": "a", "title": "Launch beta", "subtasks": [{"title": "Invite testers"}]},
            {"id": "b", "title": "Write FAQ"},
        ],
    }})
    result = run(refine_tasks(fake, "break this down", full, context_task=full[0]))
    assert [t.id for t in result.updated_tasks] == ["a", "b"]
    assert [s.title for s in result.updated_tasks[0].subtasks] == ["Invite testers"]
    assert 'Break down the task "Launch beta"' in fake.prompt("refine_tasks").user
