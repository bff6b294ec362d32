"""
GroundControl - Task State Machine & Ordering Engine

Backend core for the GroundControl / Sage Tasks board and sales pipeline.
Owns every rule that keeps the board consistent; pages and components are
consumers of the mutations and queries exposed here.

Core:
- Entity store with atomic units of work (snapshot + rollback, atomic persist)
- Ordering engine: dense per-column order for tasks, prospects and projects
  * Append on create, shift on move, close the gap on delete
  * Out-of-range indices clamp to the end of the column
- Transition state machine for task status / prospect stage
  * Blocking dependencies: no task reaches "done" while a blocker is open
    (explicit force override available)
  * Assignee auto-cleared on completion unless set in the same call
- Activity log: append-only audit trail written in the same unit of work
  * created, updated, moved, completed, commented, assigned, deleted
- Comment & mention pipeline: @clifton / @sage extraction, mention notifications
- Time-tracking ledger: one open timer per task, 1-minute floor on stop

Integrations:
- Outbound notifications pushed to an outbox after commit, drained
  asynchronously to the collaborator webhook and Telegram
  * Delivery failures are logged, never raised to the mutation caller
- GitHub webhook boundary: commit / PR references become system comments
  and status moves
- Templates: reusable subtask bundles stamped onto new tasks and projects
- Project pipeline: client website projects with bulk stage updates

Interfaces:
- FastAPI application in groundcontrol.main
"""

__version__ = "1.4.0"

SERVICE_NAME = "GroundControl Task Core"
