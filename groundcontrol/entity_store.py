"""
Entity Store - Durable Keyed Documents with Units of Work

Holds every table the core writes to (tasks, prospects, projects, templates,
activity) as dicts of JSON documents keyed by id.

IMPORTANT:
- Every write happens inside transaction(); writes made outside one are
  wrapped in their own
- Nested transactions join the outermost one
- An exception escaping the outermost transaction restores the snapshot
  taken on entry, so nothing is partially applied
- Commit persists atomically (temp file + replace) when a data file is set
- Post-commit hooks run after the lock is released and never fail the commit
- Readers get deep copies; mutate through patch()
"""

import copy
import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from .errors import NotFoundError, StoreError
from .models import new_id, utc_now_iso

logger = logging.getLogger("entity_store")

TABLES = ("tasks", "prospects", "projects", "templates", "activity")
STORE_VERSION = "1.0"


class UnitOfWork:
    """Handle for the active transaction; collects post-commit hooks."""

    def __init__(self):
        self._hooks: List[Callable[[], None]] = []

    def on_commit(self, hook: Callable[[], None]) -> None:
        self._hooks.append(hook)

    def run_hooks(self) -> None:
        for hook in self._hooks:
            try:
                hook()
            except Exception as e:
                logger.error(f"Post-commit hook failed: {e}")
        self._hooks.clear()


class EntityStore:
    """
    Keyed document store.

    Features:
    - get / insert / patch / delete / query per table
    - Re-entrant units of work with snapshot rollback
    - Atomic JSON persistence (in-memory when no data file is configured)
    """

    def __init__(self, data_file: Optional[Path] = None):
        self._data_file = Path(data_file) if data_file else None
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in TABLES}
        self._lock = threading.RLock()
        self._active: Optional[UnitOfWork] = None
        self._load()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _load(self) -> None:
        """Load tables from the data file, if any."""
        if self._data_file is None:
            logger.info("No data file configured, using in-memory store")
            return
        if not self._data_file.exists():
            logger.info("No existing data file, starting fresh")
            return

        try:
            with open(self._data_file) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StoreError(
                "Failed to load entity store",
                details={"path": str(self._data_file), "error": str(e)}
            )

        for name, rows in data.get("tables", {}).items():
            if name not in self._tables:
                logger.warning(f"Ignoring unknown table in data file: {name}")
                continue
            self._tables[name] = rows

        counts = ", ".join(f"{name}={len(rows)}" for name, rows in self._tables.items())
        logger.info(f"Loaded entity store from {self._data_file} ({counts})")

    def _persist(self) -> None:
        """Write every table to the data file atomically."""
        if self._data_file is None:
            return

        try:
            self._data_file.parent.mkdir(parents=True, exist_ok=True)

            data = {
                "version": STORE_VERSION,
                "updated_at": utc_now_iso(),
                "tables": self._tables,
            }

            # Atomic write
            temp_file = self._data_file.with_suffix(".tmp")
            with open(temp_file, "w") as f:
                json.dump(data, f, indent=2)
            temp_file.replace(self._data_file)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save entity store: {e}")
            raise StoreError(
                "Failed to save entity store",
                details={"path": str(self._data_file), "error": str(e)}
            )

    # -------------------------------------------------------------------------
    # Units of work
    # -------------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[UnitOfWork]:
        """
        Run a block as one unit of work.

        The outermost transaction owns the snapshot, the persist and the
        hooks; inner ones simply yield the active handle.
        """
        with self._lock:
            if self._active is not None:
                yield self._active
                return

            uow = UnitOfWork()
            snapshot = copy.deepcopy(self._tables)
            self._active = uow
            try:
                yield uow
                self._persist()
            except BaseException:
                self._tables = snapshot
                logger.debug("Unit of work rolled back")
                raise
            finally:
                self._active = None

        uow.run_hooks()

    @property
    def in_transaction(self) -> bool:
        return self._active is not None

    def on_commit(self, hook: Callable[[], None]) -> None:
        """Register a hook on the active unit of work (or run it now)."""
        if self._active is not None:
            self._active.on_commit(hook)
        else:
            hook()

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        if table not in self._tables:
            raise KeyError(f"Unknown table: {table}")
        return self._tables[table]

    def get(self, table: str, entity_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._table(table).get(entity_id)
            return copy.deepcopy(doc) if doc is not None else None

    def require(self, table: str, entity_id: str) -> Dict[str, Any]:
        """get() that raises NotFoundError instead of returning None."""
        doc = self.get(table, entity_id)
        if doc is None:
            raise NotFoundError(table.rstrip("s"), entity_id)
        return doc

    def exists(self, table: str, entity_id: str) -> bool:
        with self._lock:
            return entity_id in self._table(table)

    def insert(self, table: str, doc: Dict[str, Any]) -> str:
        """Insert a document, assigning an id when it has none."""
        with self.transaction():
            rows = self._table(table)
            entity_id = doc.get("id") or new_id()
            if entity_id in rows:
                raise StoreError(
                    f"Duplicate id in {table}",
                    details={"table": table, "id": entity_id}
                )
            stored = copy.deepcopy(doc)
            stored["id"] = entity_id
            rows[entity_id] = stored
            return entity_id

    def patch(self, table: str, entity_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Merge fields into a document and return the updated copy."""
        with self.transaction():
            rows = self._table(table)
            if entity_id not in rows:
                raise NotFoundError(table.rstrip("s"), entity_id)
            for key, value in fields.items():
                if key == "id":
                    continue
                rows[entity_id][key] = copy.deepcopy(value)
            return copy.deepcopy(rows[entity_id])

    def delete(self, table: str, entity_id: str) -> bool:
        with self.transaction():
            return self._table(table).pop(entity_id, None) is not None

    def query(
        self,
        table: str,
        order_by: Optional[str] = None,
        reverse: bool = False,
        **equals: Any
    ) -> List[Dict[str, Any]]:
        """
        Equality-filtered scan of a table.

        Filters compare by stored value; enum members match their value.
        """
        with self._lock:
            wanted = {
                key: getattr(value, "value", value)
                for key, value in equals.items()
            }
            rows = [
                copy.deepcopy(doc)
                for doc in self._table(table).values()
                if all(doc.get(key) == value for key, value in wanted.items())
            ]

        if order_by is not None:
            rows.sort(key=lambda doc: doc.get(order_by), reverse=reverse)
        return rows

    def count(self, table: str, **equals: Any) -> int:
        with self._lock:
            wanted = {
                key: getattr(value, "value", value)
                for key, value in equals.items()
            }
            return sum(
                1 for doc in self._table(table).values()
                if all(doc.get(key) == value for key, value in wanted.items())
            )
