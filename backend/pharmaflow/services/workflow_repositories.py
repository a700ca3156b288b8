# Overview: SQL-backed repositories injected into the workflow engine.

from __future__ import annotations

from ..extensions import db
from ..models import User, WorkflowHistoryEntry, WorkflowStage, WorkflowTransition
from . import stage_permission_service
from pharmaflow.time_utils import utcnow


class SqlStageRepository:
    def get(self, stage_id: int) -> WorkflowStage | None:
        return db.session.get(WorkflowStage, stage_id)

    def by_code(self, code: str) -> WorkflowStage | None:
        return db.session.query(WorkflowStage).filter_by(code=code.upper()).first()

    def list_active(self) -> list[WorkflowStage]:
        return (
            db.session.query(WorkflowStage)
            .filter(WorkflowStage.is_active.is_(True))
            .order_by(WorkflowStage.sequence, WorkflowStage.id)
            .all()
        )


class SqlTransitionRepository:
    def outgoing(self, from_stage_id: int, action: str) -> list[WorkflowTransition]:
        return (
            db.session.query(WorkflowTransition)
            .filter_by(from_stage_id=from_stage_id, action=action)
            .order_by(WorkflowTransition.id)
            .all()
        )

    def auto_rules(self, from_stage_id: int) -> list[WorkflowTransition]:
        return (
            db.session.query(WorkflowTransition)
            .filter_by(from_stage_id=from_stage_id, auto_transition=True)
            .order_by(WorkflowTransition.id)
            .all()
        )

    def list_all(self) -> list[WorkflowTransition]:
        return db.session.query(WorkflowTransition).order_by(WorkflowTransition.id).all()


class SqlAssignmentRepository:
    def missing_permissions(self, user_id: int, stage: WorkflowStage, action: str) -> list[str] | None:
        return stage_permission_service.missing_permissions(user_id, stage, action)

    def users_with_valid_grant(self, stage_id: int) -> list[int]:
        return stage_permission_service.users_with_valid_grant(stage_id)


class SqlUserRepository:
    def get(self, user_id: int) -> User | None:
        return db.session.get(User, user_id)


class SqlHistoryRepository:
    def next_sequence(self, entity_type: str, entity_id: int) -> int:
        current = (
            db.session.query(db.func.max(WorkflowHistoryEntry.sequence))
            .filter_by(entity_type=entity_type, entity_id=entity_id)
            .scalar()
        )
        return (current or 0) + 1

    def append(self, **values) -> WorkflowHistoryEntry:
        values.setdefault("action_date", utcnow())
        entry = WorkflowHistoryEntry(**values)
        db.session.add(entry)
        return entry

    def page(self, entity_type: str, entity_id: int, *, page: int, limit: int) -> tuple[list[WorkflowHistoryEntry], int]:
        query = db.session.query(WorkflowHistoryEntry).filter_by(entity_type=entity_type, entity_id=entity_id)
        total = query.count()
        entries = (
            query.order_by(WorkflowHistoryEntry.sequence.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return entries, total
