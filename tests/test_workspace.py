"""Test the file-backed workspace."""

import pytest

from helpers import TASK_ID, make_task, make_workspace

from marketeam.catalog import CONTEXT_PATH
from marketeam.errors import InvalidTransitionError, WorkspaceError
from marketeam.models import (
    HumanReviewItem,
    HumanReviewStatus,
    LearningEntry,
    Review,
    TaskStatus,
    Urgency,
    Verdict,
    generate_review_id,
)
from marketeam.workspace import WORKSPACE_DIRS, FileWorkspace


def test_init_creates_directories(tmp_path):
    workspace = FileWorkspace(tmp_path / "ws")
    assert not workspace.is_initialized()
    workspace.init()
    assert workspace.is_initialized()
    for name in WORKSPACE_DIRS:
        assert (tmp_path / "ws" / name).is_dir()


def test_file_round_trip(tmp_path):
    workspace = make_workspace(tmp_path)
    workspace.write_file("outputs/creative/copywriting/a.md", "# Hello\n")
    assert workspace.read_file("outputs/creative/copywriting/a.md") == "# Hello\n"
    assert workspace.file_exists("outputs/creative/copywriting/a.md")
    assert workspace.list_files("outputs/creative/copywriting") == ["a.md"]
    assert workspace.list_files("outputs/nowhere") == []

    workspace.delete_file("outputs/creative/copywriting/a.md")
    assert not workspace.file_exists("outputs/creative/copywriting/a.md")


def test_missing_file(tmp_path):
    workspace = make_workspace(tmp_path)
    with pytest.raises(WorkspaceError) as exc:
        workspace.read_file("tasks/missing.json")
    assert exc.value.path == "tasks/missing.json"


def test_paths_cannot_escape(tmp_path):
    workspace = make_workspace(tmp_path)
    with pytest.raises(WorkspaceError, match="escapes workspace"):
        workspace.write_file("../outside.md", "nope")
    assert not (tmp_path / "outside.md").exists()


def test_task_round_trip(tmp_path):
    workspace = make_workspace(tmp_path)
    task = make_task(metadata={"step_index": 2})
    workspace.write_task(task)
    assert workspace.read_task(TASK_ID) == task


def test_corrupt_task_record(tmp_path):
    workspace = make_workspace(tmp_path)
    workspace.write_file("tasks/broken.json", "{not json")
    with pytest.raises(WorkspaceError, match="Corrupt record"):
        workspace.read_task("broken")


def test_list_tasks_filters(tmp_path):
    workspace = make_workspace(tmp_path)
    workspace.write_task(make_task(id="a", status=TaskStatus.PENDING, created_at="2026-02-19T00:00:01+00:00"))
    workspace.write_task(make_task(id="b", to="copywriting", created_at="2026-02-19T00:00:02+00:00"))
    workspace.write_task(make_task(id="c", goal_id="other", pipeline_id="run-1", created_at="2026-02-19T00:00:00+00:00"))

    assert [t.id for t in workspace.list_tasks()] == ["c", "a", "b"]
    assert [t.id for t in workspace.list_tasks(status=TaskStatus.PENDING)] == ["a"]
    assert [t.id for t in workspace.list_tasks(status=[TaskStatus.PENDING, TaskStatus.COMPLETED])] == ["c", "a", "b"]
    assert [t.id for t in workspace.list_tasks(skill="copywriting")] == ["b"]
    assert [t.id for t in workspace.list_tasks(goal_id="other")] == ["c"]
    assert [t.id for t in workspace.list_tasks(pipeline_id="run-1")] == ["c"]


def test_update_task_status(tmp_path):
    workspace = make_workspace(tmp_path)
    workspace.write_task(make_task(status=TaskStatus.PENDING))

    task = workspace.update_task_status(TASK_ID, TaskStatus.IN_PROGRESS)
    assert task.status == TaskStatus.IN_PROGRESS
    assert task.updated_at != "2026-02-19T00:00:00+00:00"
    assert workspace.read_task(TASK_ID).status == TaskStatus.IN_PROGRESS


def test_illegal_status_change_leaves_task_untouched(tmp_path):
    workspace = make_workspace(tmp_path)
    workspace.write_task(make_task(status=TaskStatus.APPROVED))
    with pytest.raises(InvalidTransitionError):
        workspace.update_task_status(TASK_ID, TaskStatus.PENDING)
    assert workspace.read_task(TASK_ID).status == TaskStatus.APPROVED


def _review(index):
    return Review(id=generate_review_id(TASK_ID, index), task_id=TASK_ID, author="page-cro", verdict=Verdict.REVISE)


def test_reviews_sorted_by_index(tmp_path):
    workspace = make_workspace(tmp_path)
    for index in (2, 10, 0, 1):
        workspace.write_review(_review(index))

    reviews = workspace.list_reviews(TASK_ID)
    assert [r.id.rsplit("-", 1)[-1] for r in reviews] == ["0", "1", "2", "10"]
    assert workspace.read_review(TASK_ID).id == f"review-{TASK_ID}-10"
    assert workspace.read_review(TASK_ID, 1).id == f"review-{TASK_ID}-1"
    assert workspace.file_exists(f"reviews/{TASK_ID}/review-10.json")


def test_read_review_without_reviews(tmp_path):
    workspace = make_workspace(tmp_path)
    assert workspace.list_reviews(TASK_ID) == []
    with pytest.raises(WorkspaceError, match="No reviews"):
        workspace.read_review(TASK_ID)


def test_outputs(tmp_path):
    workspace = make_workspace(tmp_path)
    workspace.write_output("convert", "page-cro", TASK_ID, "# Audit")
    assert workspace.read_output("convert", "page-cro", TASK_ID) == "# Audit"
    assert FileWorkspace.output_path("convert", "page-cro", TASK_ID) == f"outputs/convert/page-cro/{TASK_ID}.md"
    assert FileWorkspace.output_path(None, "product-marketing-context", "x") == CONTEXT_PATH


def test_task_output(tmp_path):
    workspace = make_workspace(tmp_path)
    task = make_task()
    assert workspace.read_task_output(task) == ""

    path = workspace.write_task_output(task, "# Audit")
    assert path == task.output.path
    assert workspace.read_task_output(task) == "# Audit"


def test_foundation_output_goes_to_context(tmp_path):
    workspace = make_workspace(tmp_path)
    task = make_task(to="product-marketing-context")
    assert not workspace.context_exists()

    assert workspace.write_task_output(task, "# Product") == CONTEXT_PATH
    assert workspace.context_exists()
    assert workspace.read_context() == "# Product"


def test_learnings(tmp_path):
    workspace = make_workspace(tmp_path)
    assert workspace.read_learnings() == []
    for i in range(3):
        workspace.append_learning(
            LearningEntry(agent="director", goal_id="g1", outcome="success", learning=f"L{i}", action_taken="a")
        )
    learnings = workspace.read_learnings()
    assert [e.learning for e in learnings] == ["L0", "L1", "L2"]


def test_metrics_report(tmp_path):
    workspace = make_workspace(tmp_path)
    workspace.write_metrics_report("2026-02-19", "# Metrics")
    assert workspace.read_metrics_report("2026-02-19") == "# Metrics"


def _item(id, **overrides):
    fields = dict(
        id=id,
        task_id=TASK_ID,
        skill="page-cro",
        urgency=Urgency.HIGH,
        escalation_reason="agent_loop_detected",
        escalation_message="looping",
    )
    fields.update(overrides)
    return HumanReviewItem(**fields)


def test_human_review_items(tmp_path):
    workspace = make_workspace(tmp_path)
    workspace.write_human_review(_item("hr-1", created_at="2026-02-19T00:00:01+00:00"))
    workspace.write_human_review(
        _item("hr-2", urgency=Urgency.CRITICAL, skill="copywriting", created_at="2026-02-19T00:00:00+00:00")
    )
    workspace.write_human_review(_item("hr-3", status=HumanReviewStatus.RESOLVED, goal_id="g1"))

    assert [i.id for i in workspace.list_human_reviews()] == ["hr-2", "hr-1", "hr-3"]
    assert [i.id for i in workspace.list_human_reviews(status="pending")] == ["hr-2", "hr-1"]
    assert [i.id for i in workspace.list_human_reviews(urgency=["critical"])] == ["hr-2"]
    assert [i.id for i in workspace.list_human_reviews(skill="page-cro")] == ["hr-1", "hr-3"]
    assert [i.id for i in workspace.list_human_reviews(goal_id="g1")] == ["hr-3"]


def test_update_human_review(tmp_path):
    workspace = make_workspace(tmp_path)
    workspace.write_human_review(_item("hr-1"))

    item = workspace.update_human_review("hr-1", status=HumanReviewStatus.IN_REVIEW)
    assert item.status == HumanReviewStatus.IN_REVIEW
    assert workspace.read_human_review("hr-1").status == HumanReviewStatus.IN_REVIEW

    with pytest.raises(WorkspaceError, match="Unknown human review field"):
        workspace.update_human_review("hr-1", colour="red")
