# Overview: Workflow statistics per stage.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import WorkflowHistoryEntry, WorkflowStage
from ..validation import Violations, coerce_datetime, coerce_int
from . import stage_permission_service
from .entity_adapters import get_adapter
from pharmaflow.time_utils import normalize_utc, utcnow


def _hours_between(start: datetime, end: datetime) -> float:
    return (end - normalize_utc(start)).total_seconds() / 3600.0


def get_workflow_statistics(
    entity_type: str = "purchase_order",
    *,
    from_date=None,
    to_date=None,
    stage_id=None,
) -> dict:
    """
    Count entities per current stage and how long they have waited there.

    from_date/to_date filter on entity creation time. Waiting time is
    measured from the latest history entry, or from creation for entities
    that never moved.
    """
    adapter = get_adapter(entity_type)
    v = Violations()
    start = coerce_datetime(v, "from_date", from_date)
    end = coerce_datetime(v, "to_date", to_date)
    if stage_id not in (None, ""):
        stage_id = coerce_int(v, "stage_id", stage_id, minimum=1)
    else:
        stage_id = None
    if start and end and start > end:
        v.add("from_date", "must be before to_date")
    v.raise_if_any()

    model = adapter.model
    query = db.session.query(model.id, model.current_stage_id, model.created_at)
    if start:
        query = query.filter(model.created_at >= start)
    if end:
        query = query.filter(model.created_at <= end)
    if stage_id:
        query = query.filter(model.current_stage_id == stage_id)
    rows = query.all()

    last_moves = dict(
        db.session.query(WorkflowHistoryEntry.entity_id, db.func.max(WorkflowHistoryEntry.action_date))
        .filter(WorkflowHistoryEntry.entity_type == entity_type)
        .group_by(WorkflowHistoryEntry.entity_id)
        .all()
    )

    now = utcnow()
    buckets: dict[int | None, list[float]] = {}
    for entity_id, current_stage_id, created_at in rows:
        since = last_moves.get(entity_id) or created_at
        buckets.setdefault(current_stage_id, []).append(_hours_between(since, now))

    stages = {
        s.id: s for s in db.session.query(WorkflowStage).filter(
            WorkflowStage.id.in_([sid for sid in buckets if sid is not None])
        ).all()
    } if buckets else {}

    statistics = []
    for sid, waits in buckets.items():
        stage = stages.get(sid)
        statistics.append({
            "stage_id": sid,
            "stage_code": stage.code if stage else None,
            "stage_name": stage.name if stage else None,
            "sequence": stage.sequence if stage else None,
            "count": len(waits),
            "avg_time_hours": round(sum(waits) / len(waits), 2),
        })
    statistics.sort(key=lambda s: (s["sequence"] is None, s["sequence"] or 0, s["stage_id"] or 0))

    return {
        "entity_type": entity_type,
        "total": len(rows),
        "statistics": statistics,
    }


def stage_summary(stage_id: int) -> dict:
    """Assignment counts for one stage (used by the stage users view)."""
    assignments = stage_permission_service.list_stage_users(stage_id, include_inactive=True)
    valid = [a for a in assignments if a.is_valid]
    return {
        "stage_id": stage_id,
        "assignments": len(assignments),
        "valid": len(valid),
        "expired": sum(1 for a in assignments if a.is_active and a.is_expired),
        "inactive": sum(1 for a in assignments if not a.is_active),
    }

