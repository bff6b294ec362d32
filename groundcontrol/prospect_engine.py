"""
Prospect Engine - Sales Pipeline

Prospects move freely between stages and are kept densely ordered per stage
by the same ordering engine as tasks. They have no blockers, no timers and
no activity records; changes are traced through the module logger only.
"""

import logging
from typing import Any, Dict, List

from .entity_store import EntityStore
from .errors import ValidationError
from .models import (
    PROSPECT_DETAIL_FIELDS,
    Prospect,
    ProspectStage,
    Urgency,
    new_id,
    utc_now_iso,
)
from .ordering import OrderingEngine

logger = logging.getLogger("prospect_engine")

TABLE = "prospects"


def _normalize(fields: Dict[str, Any]) -> Dict[str, Any]:
    errors: List[str] = []
    out: Dict[str, Any] = {}
    for name, value in fields.items():
        if name in ("title", "company"):
            if not isinstance(value, str) or not value.strip():
                errors.append(f"{name} is required")
            else:
                out[name] = value.strip()
        elif name == "urgency":
            try:
                out[name] = Urgency(getattr(value, "value", value)).value
            except ValueError:
                errors.append("urgency must be one of: " + ", ".join(u.value for u in Urgency))
        elif name == "stage":
            try:
                out[name] = ProspectStage(getattr(value, "value", value)).value
            except ValueError:
                errors.append("stage must be one of: " + ", ".join(s.value for s in ProspectStage))
        elif name in PROSPECT_DETAIL_FIELDS:
            out[name] = str(value) if value is not None else None
        else:
            errors.append(f"Unknown prospect field: {name}")
    if errors:
        raise ValidationError(errors)
    return out


class ProspectEngine:
    def __init__(self, store: EntityStore):
        self.store = store
        self.ordering = OrderingEngine(store, TABLE, "stage")

    def get_prospect(self, prospect_id: str) -> Prospect:
        return Prospect.from_dict(self.store.require(TABLE, prospect_id))

    def create_prospect(
        self,
        title: str,
        company: str,
        stage: ProspectStage = ProspectStage.LEAD,
        urgency: Urgency = Urgency.FRESH,
        **details: Any
    ) -> str:
        """Create a prospect at the end of its stage; returns the id."""
        fields = _normalize(dict(title=title, company=company, stage=stage, urgency=urgency, **details))

        stage_value = fields.pop("stage")
        with self.store.transaction():
            prospect = Prospect(
                id=new_id(),
                title=fields.pop("title"),
                company=fields.pop("company"),
                stage=ProspectStage(stage_value),
                urgency=Urgency(fields.pop("urgency")),
                order=self.ordering.append_order(stage_value),
                created_at=utc_now_iso(),
                **fields,
            )
            self.store.insert(TABLE, prospect.to_dict())

        logger.info(f"Created prospect '{prospect.title}' ({prospect.company}) in {prospect.stage.value}")
        return prospect.id

    def update_prospect(self, prospect_id: str, **fields: Any) -> str:
        """Patch contact details, title, company or urgency (not stage/order)."""
        if "stage" in fields or "order" in fields:
            raise ValidationError(["use move_prospect to change stage or order"])
        changes = _normalize(fields)

        with self.store.transaction():
            self.store.require(TABLE, prospect_id)
            changes["updated_at"] = utc_now_iso()
            self.store.patch(TABLE, prospect_id, changes)

        logger.info(f"Updated prospect {prospect_id}: {', '.join(sorted(fields))}")
        return prospect_id

    def move_prospect(self, prospect_id: str, new_stage: ProspectStage, new_order: int) -> str:
        """Move a prospect to a stage position, reordering both stages."""
        stage = _normalize({"stage": new_stage})["stage"]

        with self.store.transaction():
            doc = self.store.require(TABLE, prospect_id)
            final = self.ordering.move(doc, stage, new_order)
            self.store.patch(TABLE, prospect_id, {"updated_at": utc_now_iso()})

        logger.info(f"Moved prospect '{doc['title']}' {doc['stage']}[{doc['order']}] -> {stage}[{final}]")
        return prospect_id

    def delete_prospect(self, prospect_id: str) -> None:
        """
        Raises:
            NotFoundError: unknown prospect
        """
        with self.store.transaction():
            doc = self.store.require(TABLE, prospect_id)
            self.ordering.close_gap(doc)
            self.store.delete(TABLE, prospect_id)
        logger.info(f"Deleted prospect '{doc['title']}'")

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_prospects(self) -> List[Prospect]:
        return [Prospect.from_dict(d) for d in self.store.query(TABLE, order_by="order")]

    def prospects_by_stage(self, stage: ProspectStage) -> List[Prospect]:
        docs = self.store.query(TABLE, order_by="order", stage=ProspectStage(stage))
        return [Prospect.from_dict(d) for d in docs]

    def prospect_stats(self) -> Dict[str, int]:
        stats = {"total": self.store.count(TABLE)}
        for stage in ProspectStage:
            stats[stage.value] = self.store.count(TABLE, stage=stage)
        return stats
