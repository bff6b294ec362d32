"""
Ordering Engine

Keeps the integer ``order`` field dense (0..N-1, unique) inside every
partition of a table: the status column for tasks, the stage for prospects.

- Append: order = max(order in partition) + 1 (0 for an empty partition)
- Move within a partition shifts the range between old and new
- Move across partitions opens a slot in the destination and closes the gap
  in the source
- Delete closes the gap behind the removed entity

Out-of-range targets are clamped into [0, size of destination], so a move
past the end appends. All shifts must run inside the caller's unit of work.
"""

import logging
from typing import Any, Dict, Optional

from .entity_store import EntityStore

logger = logging.getLogger("ordering")


class OrderingEngine:
    """Dense per-partition ordering over one store table."""

    def __init__(self, store: EntityStore, table: str, partition_field: str):
        self.store = store
        self.table = table
        self.partition_field = partition_field

    def _partition(self, value: Any, exclude_id: Optional[str] = None):
        return [
            doc for doc in self.store.query(self.table, **{self.partition_field: value})
            if doc["id"] != exclude_id
        ]

    def _shift(self, doc: Dict[str, Any], delta: int) -> None:
        self.store.patch(self.table, doc["id"], {"order": doc["order"] + delta})

    def append_order(self, partition: Any) -> int:
        """Order for a new entity at the end of the partition."""
        orders = [doc.get("order", 0) for doc in self._partition(partition)]
        return max(orders, default=-1) + 1

    def clamp(self, partition: Any, new_index: int, exclude_id: Optional[str] = None) -> int:
        size = len(self._partition(partition, exclude_id=exclude_id))
        return max(0, min(int(new_index), size))

    def move(self, entity: Dict[str, Any], to_partition: Any, new_index: int) -> int:
        """
        Reposition an entity and shift its siblings.

        Updates the entity's order (and partition key when it changes) and
        returns the order it ends up with.
        """
        entity_id = entity["id"]
        from_partition = entity[self.partition_field]
        old_order = entity["order"]
        to_key = getattr(to_partition, "value", to_partition)
        new_order = self.clamp(to_key, new_index, exclude_id=entity_id)

        with self.store.transaction():
            if to_key == from_partition:
                if new_order == old_order:
                    return old_order
                for doc in self._partition(from_partition, exclude_id=entity_id):
                    if new_order > old_order and old_order < doc["order"] <= new_order:
                        self._shift(doc, -1)
                    elif new_order < old_order and new_order <= doc["order"] < old_order:
                        self._shift(doc, +1)
                self.store.patch(self.table, entity_id, {"order": new_order})
            else:
                for doc in self._partition(to_key, exclude_id=entity_id):
                    if doc["order"] >= new_order:
                        self._shift(doc, +1)
                for doc in self._partition(from_partition, exclude_id=entity_id):
                    if doc["order"] > old_order:
                        self._shift(doc, -1)
                self.store.patch(
                    self.table,
                    entity_id,
                    {self.partition_field: to_key, "order": new_order}
                )

        logger.debug(
            f"{self.table} {entity_id}: {from_partition}[{old_order}] -> {to_key}[{new_order}]"
        )
        return new_order

    def close_gap(self, entity: Dict[str, Any]) -> None:
        """Shift down every sibling ordered after a removed entity."""
        with self.store.transaction():
            for doc in self._partition(entity[self.partition_field], exclude_id=entity["id"]):
                if doc["order"] > entity["order"]:
                    self._shift(doc, -1)
