import pytest

from taskwise.models.task import Task
from taskwise.services.task_tree import (
    TaskCycleError,
    align_tasks_to_light,
    apply_task_metadata,
    assign_stable_ids,
    ensure_acyclic,
    filter_valid,
    find_task_by_title,
    flatten,
    flatten_with_paths,
    is_valid_title,
    normalize_ai_tasks,
    remove_tasks_by_ids,
)


def _forest():
    return [
        Task(id="a", title="Plan launch", subtasks=[Task(id="a1", title="Draft press release"), Task(id="a2", title="Book venue")]),
        Task(id="b", title="Hire designer"),
    ]


def test_flatten_is_pre_order():
    assert [t.id for t in flatten(_forest())] == ["a", "a1", "a2", "b"]


def test_flatten_with_paths():
    assert [p for p, _ in flatten_with_paths(_forest())] == ["0", "0.0", "0.1", "1"]


def test_assign_stable_ids_fills_missing_fields():
    out = assign_stable_ids([Task(title="", subtasks=[Task(title="Child")])])
    assert out[0].id and out[0].title == "Untitled Task" and out[0].priority == "medium"
    assert out[0].subtasks[0].id


def test_assign_stable_ids_is_idempotent_and_keeps_ids():
    once = assign_stable_ids([Task(title="New"), *_forest()])
    twice = assign_stable_ids(once)
    assert once == twice
    assert [t.id for t in once[1:]] == ["a", "b"]


def test_assign_stable_ids_tolerates_bad_input():
    assert assign_stable_ids(None) == []
    assert assign_stable_ids("nope") == []
    assert len(assign_stable_ids([None, Task(title="Keep")])) == 1


def test_assign_stable_ids_does_not_mutate_input():
    tasks = [Task(title="No id")]
    assign_stable_ids(tasks)
    assert tasks[0].id is None


def test_filter_valid_drops_placeholders_in_order():
    titles = ["Valid Task", "", " ", "1.", "a)", "Another valid one"]
    out = filter_valid([Task(title=t) for t in titles])
    assert [t.title for t in out] == ["Valid Task", "Another valid one"]


def test_filter_valid_is_recursive():
    parent = Task(
        title="Parent",
        subtasks=[
            Task(title="Valid child"),
            Task(title="2)", subtasks=[Task(title=""), Task(title="b)")]),
        ],
    )
    out = filter_valid([parent])
    assert len(out) == 1
    assert [c.title for c in out[0].subtasks] == ["Valid child"]
    assert out[0].subtasks[0].subtasks == []


@pytest.mark.parametrize("title", ["Task", "Action item 3", "Next step", "???", "7"])
def test_generic_titles_are_invalid(title):
    assert not is_valid_title(title)


def test_remove_tasks_by_ids_removes_descendants():
    out = remove_tasks_by_ids(_forest(), {"a"})
    assert [t.id for t in flatten(out)] == ["b"]


def test_find_task_by_title_searches_subtasks():
    assert find_task_by_title(_forest(), "Book venue").id == "a2"
    assert find_task_by_title(_forest(), "Missing") is None


def test_ensure_acyclic_rejects_ancestor_reuse():
    ensure_acyclic(_forest())
    with pytest.raises(TaskCycleError):
        ensure_acyclic([Task(id="x", title="Root", subtasks=[Task(id="y", title="Mid", subtasks=[Task(id="x", title="Loop")])])])


def test_normalize_ai_tasks_coerces_loose_shapes():
    raw = [
        "Email the vendor",
        {"title": "1.", "description": "Collect invoices. Then file them.", "priority": "URGENT"},
        {"title": "Review contract", "assignee": "Dana", "due": "2030-01-01", "status": "Done",
         "subtasks": [{"title": "Check clause 4"}, {"title": ""}]},
        42,
    ]
    out = normalize_ai_tasks(raw)
    assert [t.title for t in out] == ["Email the vendor", "Collect invoices", "Review contract"]
    assert out[1].priority == "medium"
    assert out[2].assignee_name == "Dana" and out[2].due_at == "2030-01-01" and out[2].status == "done"
    assert [s.title for s in out[2].subtasks] == ["Check clause 4", "Review contract follow-up 2"]


def test_normalize_ai_tasks_rejects_non_list():
    assert normalize_ai_tasks({"title": "x"}) == []


def test_align_tasks_to_light_follows_light_titles():
    light = [Task(title="Launch site"), Task(title="Write docs")]
    medium = [Task(title="Write docs today", subtasks=[Task(title="Outline")]), Task(title="Launch site now")]
    out = align_tasks_to_light(light, medium)
    assert [t.title for t in out] == ["Launch site", "Write docs"]
    assert out[1].subtasks[0].title == "Outline"


def test_apply_task_metadata_infers_priority():
    out = apply_task_metadata([
        Task(title="Fix login bug ASAP"),
        Task(title="Clean up backlog later"),
        Task(title="Pick colours", priority="high"),
        Task(title="Write tests"),
    ])
    assert [t.priority for t in out] == ["high", "low", "high", "medium"]
