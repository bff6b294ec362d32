"""
Ordering Engine Tests

Dense per-partition ordering: append, move within/across partitions,
clamping and gap closing.
"""

import pytest

from groundcontrol.entity_store import EntityStore
from groundcontrol.ordering import OrderingEngine


@pytest.fixture
def ordering():
    return OrderingEngine(EntityStore(), "tasks", "status")


def add(ordering, title, status):
    order = ordering.append_order(status)
    entity_id = ordering.store.insert("tasks", {"title": title, "status": status, "order": order})
    return ordering.store.get("tasks", entity_id)


def column(ordering, status):
    rows = ordering.store.query("tasks", order_by="order", status=status)
    return [(r["title"], r["order"]) for r in rows]


def assert_dense(ordering, status):
    orders = [o for _, o in column(ordering, status)]
    assert orders == list(range(len(orders)))


class TestAppend:
    def test_empty_partition_starts_at_zero(self, ordering):
        assert ordering.append_order("todo") == 0

    def test_appends_after_max(self, ordering):
        add(ordering, "A", "todo")
        add(ordering, "B", "todo")
        add(ordering, "C", "done")
        assert ordering.append_order("todo") == 2
        assert ordering.append_order("done") == 1


class TestMoveWithinPartition:
    def test_move_down(self, ordering):
        a = add(ordering, "A", "todo")
        add(ordering, "B", "todo")
        add(ordering, "C", "todo")

        assert ordering.move(a, "todo", 2) == 2
        assert column(ordering, "todo") == [("B", 0), ("C", 1), ("A", 2)]

    def test_move_up(self, ordering):
        add(ordering, "A", "todo")
        add(ordering, "B", "todo")
        c = add(ordering, "C", "todo")

        ordering.move(c, "todo", 0)
        assert column(ordering, "todo") == [("C", 0), ("A", 1), ("B", 2)]

    def test_same_position_is_noop(self, ordering):
        a = add(ordering, "A", "todo")
        add(ordering, "B", "todo")
        assert ordering.move(a, "todo", 0) == 0
        assert column(ordering, "todo") == [("A", 0), ("B", 1)]

    def test_index_past_end_clamps(self, ordering):
        a = add(ordering, "A", "todo")
        add(ordering, "B", "todo")
        assert ordering.move(a, "todo", 99) == 1
        assert_dense(ordering, "todo")


class TestMoveAcrossPartitions:
    def test_opens_slot_and_closes_gap(self, ordering):
        add(ordering, "A", "todo")
        b = add(ordering, "B", "todo")
        add(ordering, "C", "todo")
        add(ordering, "X", "done")
        add(ordering, "Y", "done")

        ordering.move(b, "done", 1)

        assert column(ordering, "todo") == [("A", 0), ("C", 1)]
        assert column(ordering, "done") == [("X", 0), ("B", 1), ("Y", 2)]

    def test_negative_index_lands_at_front(self, ordering):
        a = add(ordering, "A", "todo")
        add(ordering, "X", "done")
        assert ordering.move(a, "done", -3) == 0
        assert column(ordering, "done") == [("A", 0), ("X", 1)]

    def test_past_end_appends(self, ordering):
        a = add(ordering, "A", "todo")
        add(ordering, "X", "done")
        assert ordering.move(a, "done", 50) == 1
        assert_dense(ordering, "done")
        assert column(ordering, "todo") == []

    def test_many_moves_stay_dense(self, ordering):
        docs = [add(ordering, f"T{i}", "todo") for i in range(6)]
        targets = [("done", 0), ("done", 0), ("review", 3), ("todo", 1), ("done", 9), ("review", 0)]
        for doc, (status, index) in zip(docs, targets):
            ordering.move(ordering.store.get("tasks", doc["id"]), status, index)

        for status in ("todo", "review", "done"):
            assert_dense(ordering, status)


class TestCloseGap:
    def test_shifts_followers(self, ordering):
        add(ordering, "A", "todo")
        b = add(ordering, "B", "todo")
        add(ordering, "C", "todo")

        ordering.close_gap(b)
        ordering.store.delete("tasks", b["id"])

        assert column(ordering, "todo") == [("A", 0), ("C", 1)]
