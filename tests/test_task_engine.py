"""
Task Engine Tests

Transition state machine: creation, moves, blocking dependencies, assignee
auto-clear, field updates, bulk operations, deletion and the audit trail
each mutation leaves behind.
"""

from datetime import date

import pytest

from groundcontrol.errors import BlockedTransitionError, NotFoundError, ValidationError
from groundcontrol.models import Actor, Assignee, Priority, TaskStatus
from groundcontrol.notifications import NotificationType

from tests.conftest import actions, orders


def activity(services, task_id, action):
    return [a for a in services.activity.activity_for_task(task_id) if a.action == action]


# =============================================================================
# Creation
# =============================================================================

class TestCreateTask:
    def test_first_and_second_in_column(self, engine):
        x = engine.create_task("X", status=TaskStatus.TODO)
        y = engine.create_task("Y", status=TaskStatus.TODO)
        assert engine.get_task(x).order == 0
        assert engine.get_task(y).order == 1

    def test_orders_are_per_column(self, engine):
        engine.create_task("A", status="todo")
        b = engine.create_task("B", status="backlog")
        assert engine.get_task(b).order == 0

    def test_logs_created(self, services, engine):
        task_id = engine.create_task("A", actor=Actor.CLIFTON)
        records = services.activity.activity_for_task(task_id)
        assert [(r.action, r.actor, r.task_title) for r in records] == [("created", "clifton", "A")]

    def test_defaults(self, engine):
        task = engine.get_task(engine.create_task("A"))
        assert task.assignee == Assignee.UNASSIGNED
        assert task.priority == Priority.MEDIUM
        assert task.status == TaskStatus.TODO
        assert task.total_time_spent == 0
        assert task.subtasks == [] and task.comments == [] and task.blocked_by == []

    def test_subtasks_from_titles(self, engine):
        task = engine.get_task(engine.create_task("A", subtasks=["one", {"title": "two", "completed": True}]))
        assert [(s.title, s.completed) for s in task.subtasks] == [("one", False), ("two", True)]
        assert len({s.id for s in task.subtasks}) == 2

    @pytest.mark.parametrize("fields", [
        {"title": "  "},
        {"title": "A", "status": "archived"},
        {"title": "A", "due_date": "03/01/2025"},
        {"title": "A", "time_estimate": -5},
        {"title": "A", "recurring": {"frequency": "daily", "interval": 0}},
        {"title": "A", "recurring": {"frequency": "hourly"}},
    ])
    def test_rejects_malformed_input(self, services, engine, fields):
        with pytest.raises(ValidationError):
            engine.create_task(**fields)
        assert services.store.count("tasks") == 0
        assert services.store.count("activity") == 0


# =============================================================================
# Moves and ordering
# =============================================================================

class TestMoveTask:
    def test_reorder_within_column(self, services, engine):
        x = engine.create_task("X", status="todo")
        y = engine.create_task("Y", status="todo")

        engine.move_task(y, TaskStatus.TODO, 0)

        assert orders(engine, "todo") == [("Y", 0), ("X", 1)]
        reorder = activity(services, y, "updated")
        assert [r.details for r in reorder] == ["order: 1 → 0"]
        assert activity(services, x, "updated") == []

    def test_same_position_is_noop(self, services, engine):
        x = engine.create_task("X", status="todo")
        engine.move_task(x, TaskStatus.TODO, 0)
        assert actions(services, x) == ["created"]

    def test_cross_column_move(self, services, engine):
        a = engine.create_task("A", status="todo")
        engine.create_task("B", status="todo")
        engine.create_task("R", status="review")

        engine.move_task(a, TaskStatus.REVIEW, 0, actor=Actor.SAGE)

        assert orders(engine, "todo") == [("B", 0)]
        assert orders(engine, "review") == [("A", 0), ("R", 1)]
        moved = activity(services, a, "moved")
        assert [(m.details, m.actor) for m in moved] == [("todo → review", "sage")]

    def test_move_without_order_appends(self, engine):
        engine.create_task("R", status="review")
        a = engine.create_task("A", status="todo")
        assert engine.move_task(a, TaskStatus.REVIEW).order == 1

    def test_out_of_range_order_appends(self, engine):
        engine.create_task("R", status="review")
        a = engine.create_task("A", status="todo")
        engine.move_task(a, "review", 40)
        assert orders(engine, "review") == [("R", 0), ("A", 1)]

    def test_on_hold_is_a_column(self, engine):
        a = engine.create_task("A", status="in-progress")
        assert engine.move_task(a, TaskStatus.ON_HOLD, 0).status == TaskStatus.ON_HOLD
        assert engine.task_stats()["by_status"]["on-hold"] == 1

    def test_missing_task(self, engine):
        with pytest.raises(NotFoundError):
            engine.move_task("missing", TaskStatus.DONE, 0)


# =============================================================================
# Blocking
# =============================================================================

class TestBlocking:
    def test_blocked_then_unblocked(self, services, engine):
        b = engine.create_task("Write schema", status="todo")
        a = engine.create_task("Ship API", status="in-progress", blocked_by=[b])

        with pytest.raises(BlockedTransitionError) as exc:
            engine.move_task(a, TaskStatus.DONE, 0)
        assert "Write schema" in str(exc.value)
        assert exc.value.blocker_titles == ["Write schema"]
        assert engine.get_task(a).status == TaskStatus.IN_PROGRESS
        assert actions(services, a) == ["created"]

        engine.move_task(b, TaskStatus.DONE, 0)
        assert engine.move_task(a, TaskStatus.DONE, 0).status == TaskStatus.DONE

    def test_rejection_leaves_orders_untouched(self, engine):
        b = engine.create_task("B", status="todo")
        a = engine.create_task("A", status="todo", blocked_by=[b])
        engine.create_task("D", status="done")

        with pytest.raises(BlockedTransitionError):
            engine.move_task(a, TaskStatus.DONE, 0)

        assert orders(engine, "todo") == [("B", 0), ("A", 1)]
        assert orders(engine, "done") == [("D", 0)]

    def test_force_bypasses(self, engine):
        b = engine.create_task("B")
        a = engine.create_task("A", blocked_by=[b])
        assert engine.move_task(a, TaskStatus.DONE, 0, force=True).status == TaskStatus.DONE

    def test_deleted_blocker_does_not_block(self, engine):
        b = engine.create_task("B")
        a = engine.create_task("A", blocked_by=[b])
        engine.delete_task(b)
        assert engine.move_task(a, TaskStatus.DONE, 0).status == TaskStatus.DONE

    def test_update_status_is_checked(self, engine):
        b = engine.create_task("B")
        a = engine.create_task("A", blocked_by=[b])
        with pytest.raises(BlockedTransitionError):
            engine.update_task(a, status="done", title="renamed")
        assert engine.get_task(a).title == "A"

    def test_other_moves_are_not_checked(self, engine):
        b = engine.create_task("B")
        a = engine.create_task("A", blocked_by=[b])
        assert engine.move_task(a, TaskStatus.REVIEW, 0).status == TaskStatus.REVIEW

    def test_blocker_status(self, engine):
        b = engine.create_task("B")
        c = engine.create_task("C", status="done")
        a = engine.create_task("A", blocked_by=[b, c, "gone"])

        status = engine.get_blocker_status(a)
        assert status["has_incomplete_blockers"] is True
        assert [(x["title"], x["status"]) for x in status["blockers"]] == [("B", "todo"), ("C", "done")]

    def test_self_block_rejected(self, engine):
        a = engine.create_task("A")
        with pytest.raises(ValidationError):
            engine.update_task(a, blocked_by=[a])


# =============================================================================
# Completion and assignee auto-clear
# =============================================================================

class TestCompletion:
    def test_auto_clear_on_done(self, services, engine):
        task_id = engine.create_task("T", assignee="sage", status="in-progress")

        task = engine.move_task(task_id, TaskStatus.DONE, 0)

        assert task.assignee == Assignee.UNASSIGNED
        moved = activity(services, task_id, "moved")
        completed = activity(services, task_id, "completed")
        assert len(moved) == 1 and "auto-cleared" in moved[0].details
        assert moved[0].details == "in-progress → done (assignee auto-cleared)"
        assert len(completed) == 1
        assert actions(services, task_id) == ["created", "moved", "completed"]

    def test_explicit_assignee_is_honored(self, services, engine):
        task_id = engine.create_task("T", assignee="sage", status="review")

        task = engine.move_task(task_id, TaskStatus.DONE, 0, assignee=Assignee.CLIFTON)

        assert task.assignee == Assignee.CLIFTON
        assert activity(services, task_id, "moved")[0].details == "review → done"
        assert activity(services, task_id, "assigned")[0].details == "assignee: sage → clifton"

    def test_unassigned_task_has_no_suffix(self, services, engine):
        task_id = engine.create_task("T")
        engine.move_task(task_id, TaskStatus.DONE, 0)
        assert activity(services, task_id, "moved")[0].details == "todo → done"

    def test_update_path_auto_clears(self, engine):
        task_id = engine.create_task("T", assignee="clifton")
        assert engine.update_task(task_id, status="done").assignee == Assignee.UNASSIGNED

    def test_bulk_path_auto_clears(self, engine):
        ids = [engine.create_task(f"T{i}", assignee="sage") for i in range(3)]
        engine.bulk_update_tasks(ids, status="done")
        assert all(engine.get_task(i).assignee == Assignee.UNASSIGNED for i in ids)

    def test_leaving_done_does_not_complete(self, services, engine):
        task_id = engine.create_task("T", status="done")
        engine.move_task(task_id, TaskStatus.TODO, 0)
        assert activity(services, task_id, "completed") == []


# =============================================================================
# Field updates
# =============================================================================

class TestUpdateTask:
    def test_single_updated_record(self, services, engine):
        task_id = engine.create_task("A", priority="low")

        engine.update_task(task_id, actor=Actor.CLIFTON, priority="high", title="B")

        updated = activity(services, task_id, "updated")
        assert len(updated) == 1
        assert updated[0].details == "priority: low → high, title: A → B"
        assert updated[0].task_title == "B"
        assert updated[0].actor == "clifton"

    def test_unchanged_values_log_nothing(self, services, engine):
        task_id = engine.create_task("A", priority="low")
        engine.update_task(task_id, priority="low")
        assert actions(services, task_id) == ["created"]

    def test_collections_are_summarized(self, services, engine):
        task_id = engine.create_task("A")
        engine.update_task(task_id, subtasks=["x"], due_date="2025-04-01")
        details = activity(services, task_id, "updated")[0].details
        assert details == "due_date: none → 2025-04-01, subtasks updated"

    def test_comments_are_replaced(self, services, engine):
        task_id = engine.create_task("A")

        task = engine.update_task(task_id, comments=[{"author": "clifton", "content": "hi"}])

        assert [(c.author, c.content) for c in task.comments] == [(Actor.CLIFTON, "hi")]
        assert [r.details for r in activity(services, task_id, "updated")] == ["comments updated"]

    def test_reorder_joins_field_clauses(self, services, engine):
        engine.create_task("A", status="todo")
        b = engine.create_task("B", status="todo")

        engine.update_task(b, title="B2", order=0)

        assert orders(engine, "todo") == [("B2", 0), ("A", 1)]
        updated = activity(services, b, "updated")
        assert [r.details for r in updated] == ["order: 1 → 0, title: B → B2"]

    def test_assignment_notifies_collaborator(self, services, engine):
        task_id = engine.create_task("A")

        engine.update_task(task_id, actor=Actor.CLIFTON, assignee="sage")

        assert activity(services, task_id, "assigned")[0].details == "assignee: unassigned → sage"
        queued = services.outbox.take_all()
        assert len(queued) == 1
        assert queued[0].notification_type == NotificationType.ASSIGNMENT
        assert queued[0].payload["assignedBy"] == "clifton"
        assert queued[0].payload["taskId"] == task_id

    def test_assignment_to_clifton_is_silent(self, services, engine):
        task_id = engine.create_task("A")
        engine.update_task(task_id, assignee="clifton")
        assert len(services.outbox) == 0

    def test_rejected_update_enqueues_nothing(self, services, engine):
        b = engine.create_task("B")
        a = engine.create_task("A", blocked_by=[b])
        with pytest.raises(BlockedTransitionError):
            engine.update_task(a, assignee="sage", status="done")
        assert len(services.outbox) == 0

    def test_unknown_field(self, engine):
        task_id = engine.create_task("A")
        with pytest.raises(ValidationError):
            engine.update_task(task_id, colour="red")

    def test_missing_task(self, engine):
        with pytest.raises(NotFoundError):
            engine.update_task("missing", title="x")


# =============================================================================
# Deletion and bulk operations
# =============================================================================

class TestDeleteTask:
    def test_delete_closes_gap_and_keeps_activity(self, services, engine):
        engine.create_task("A")
        b = engine.create_task("B")
        engine.create_task("C")

        assert engine.delete_task(b, actor=Actor.SAGE) is True

        assert orders(engine, "todo") == [("A", 0), ("C", 1)]
        deleted = activity(services, b, "deleted")
        assert [(d.task_title, d.actor) for d in deleted] == [("B", "sage")]

    def test_missing_is_noop(self, services, engine):
        assert engine.delete_task("missing") is False
        assert services.store.count("activity") == 0

    def test_bulk_delete_skips_missing(self, engine):
        ids = [engine.create_task(f"T{i}") for i in range(3)]
        assert engine.bulk_delete_tasks([ids[0], "missing", ids[2]]) == 2
        assert orders(engine, "todo") == [("T1", 0)]


class TestBulkUpdate:
    def test_counts_existing(self, engine):
        ids = [engine.create_task(f"T{i}") for i in range(2)]
        assert engine.bulk_update_tasks(ids + ["missing"], priority="high") == 2
        assert all(engine.get_task(i).priority == Priority.HIGH for i in ids)

    def test_bulk_move_keeps_columns_dense(self, engine):
        ids = [engine.create_task(f"T{i}") for i in range(4)]
        engine.bulk_update_tasks([ids[0], ids[2]], status="review")
        assert orders(engine, "todo") == [("T1", 0), ("T3", 1)]
        assert orders(engine, "review") == [("T0", 0), ("T2", 1)]

    def test_blocked_id_rejects_batch(self, engine):
        blocker = engine.create_task("blocker")
        free = engine.create_task("free")
        blocked = engine.create_task("blocked", blocked_by=[blocker])

        with pytest.raises(BlockedTransitionError):
            engine.bulk_update_tasks([free, blocked], status="done")

        assert engine.get_task(free).status == TaskStatus.TODO

    def test_order_not_allowed(self, engine):
        with pytest.raises(ValidationError):
            engine.bulk_update_tasks([], order=1)


class TestToggleSubtask:
    def test_toggle(self, services, engine):
        task_id = engine.create_task("A", subtasks=["one"])
        subtask_id = engine.get_task(task_id).subtasks[0].id

        assert engine.toggle_subtask(task_id, subtask_id).completed is True
        assert engine.toggle_subtask(task_id, subtask_id).completed is False
        details = [a.details for a in reversed(activity(services, task_id, "updated"))]
        assert details == ["subtask completed: one", "subtask reopened: one"]

    def test_unknown_subtask_is_noop(self, services, engine):
        task_id = engine.create_task("A")
        assert engine.toggle_subtask(task_id, "nope") is None
        assert actions(services, task_id) == ["created"]

    def test_missing_task(self, engine):
        with pytest.raises(NotFoundError):
            engine.toggle_subtask("missing", "x")


# =============================================================================
# Queries
# =============================================================================

class TestQueries:
    def test_list_filters(self, engine):
        engine.create_task("A", assignee="sage")
        engine.create_task("B", assignee="clifton", status="review")
        assert [t.title for t in engine.list_tasks(assignee="sage")] == ["A"]
        assert [t.title for t in engine.list_tasks(status=TaskStatus.REVIEW)] == ["B"]

    def test_collaborator_view(self, engine):
        engine.create_task("mine", assignee="sage", status="backlog")
        engine.create_task("open", status="todo")
        engine.create_task("parked", status="backlog")
        engine.create_task("theirs", assignee="clifton")

        assert {t.title for t in engine.tasks_for_collaborator()} == {"mine", "open"}

    def test_collaborator_summary(self, engine):
        engine.create_task("a", assignee="sage", status="todo")
        engine.create_task("b", assignee="sage", status="in-progress")
        engine.create_task("c", assignee="sage", status="on-hold")
        engine.create_task("d", assignee="clifton", status="review")

        summary = engine.collaborator_summary()
        assert [t.title for t in summary["pending"]] == ["a"]
        assert [t.title for t in summary["in_progress"]] == ["b"]
        assert [t.title for t in summary["on_hold"]] == ["c"]
        assert summary["in_review"] == [] and summary["completed"] == []

    def test_due_dates(self, engine):
        today = date(2025, 3, 10)
        engine.create_task("late", due_date="2025-03-09")
        engine.create_task("late but done", due_date="2025-03-01", status="done")
        engine.create_task("tomorrow", due_date="2025-03-11")
        engine.create_task("later", due_date="2025-04-01")

        assert [t.title for t in engine.overdue_tasks(today)] == ["late"]
        assert [t.title for t in engine.tasks_due_within(1, today)] == ["tomorrow"]

    def test_stats(self, engine):
        engine.create_task("a", assignee="sage", due_date="2000-01-01")
        engine.create_task("b", status="on-hold")

        stats = engine.task_stats(today=date(2025, 1, 1))
        assert stats["total"] == 2
        assert stats["by_status"]["todo"] == 1
        assert stats["by_status"]["on-hold"] == 1
        assert stats["by_assignee"] == {"clifton": 0, "sage": 1, "unassigned": 1}
        assert stats["overdue"] == 1
