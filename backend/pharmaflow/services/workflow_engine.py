# Overview: Stage state machine that moves workflow entities between stages.

"""
Workflow Engine

WHY: Purchase orders, invoice receivings, QC records and warehouse
approvals all move through configurable stages. The engine is the only
code allowed to change an entity's current stage.

A transition runs in two phases:

1. Plan (read-only): load the entity, check the stage allows the action,
   check the acting user's stage grant, resolve the transition rule,
   check required fields and conditions. Any failure here leaves no trace.
2. Apply (one transaction): copy payload fields, move the stage, append
   history, run the entity adapter hook, then follow auto-transition rules
   from the new stage up to max_auto_transitions deep. Everything commits
   together or not at all.

Audit records and notifications go out after the commit. Their failures
are logged and never undo the transition.

CONCURRENCY: entities carry a version_id column, so a second writer that
read the same stage fails its UPDATE with StaleDataError. Two writers
racing for the same history slot hit the unique (entity_type, entity_id,
sequence) constraint. Both surface as ConcurrentModificationError.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import WorkflowHistoryEntry, WorkflowStage, WorkflowTransition
from ..validation import DomainError, NotFoundError, ValidationError, Violations, coerce_int
from .audit_service import AuditSink, DatabaseAuditSink
from .entity_adapters import EntityAdapter, get_adapter
from .notification_service import NotificationSink, build_notification_sink
from .permission_service import ForbiddenError, log_security_event
from .visualization_service import build_graph, render
from .workflow_conditions import ConditionEvaluator, default_condition_evaluator, is_blank
from .workflow_repositories import (
    SqlAssignmentRepository,
    SqlHistoryRepository,
    SqlStageRepository,
    SqlTransitionRepository,
    SqlUserRepository,
)
from pharmaflow.time_utils import utcnow

logger = logging.getLogger(__name__)

HISTORY_MAX_LIMIT = 100


# -- ERRORS --

class TransitionRejectedError(DomainError):
    """
    The requested transition is not legal from the entity's current state.

    reason discriminates the rule that failed so clients can render an
    actionable message.
    """
    code = "TRANSITION_REJECTED"
    status_code = 422
    reason = "REJECTED"

    def __init__(self, message: str, *, reason: str | None = None, details: dict | None = None):
        super().__init__(message, details=details)
        if reason:
            self.reason = reason

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reason"] = self.reason
        return data


class InvalidActionError(TransitionRejectedError):
    reason = "INVALID_ACTION"


class NoRouteError(TransitionRejectedError):
    reason = "NO_ROUTE"


class MissingFieldError(TransitionRejectedError):
    reason = "MISSING_FIELDS"

    def __init__(self, missing_fields: list[str], *, details: dict | None = None):
        self.missing_fields = list(missing_fields)
        super().__init__(
            f"Missing required fields: {', '.join(self.missing_fields)}",
            details={**(details or {}), "missing_fields": self.missing_fields},
        )


class ConditionNotMetError(TransitionRejectedError):
    reason = "CONDITION_NOT_MET"


class ConcurrentModificationError(DomainError):
    """Another writer changed the entity first. Safe to retry."""
    code = "CONCURRENT_MODIFICATION"
    status_code = 409
    retryable = True


class WorkflowLoopError(DomainError):
    """Auto-transition chain exceeded the configured depth. Needs an operator."""
    code = "WORKFLOW_LOOP"
    status_code = 500


class RequestTimeoutError(DomainError, TimeoutError):
    code = "REQUEST_TIMEOUT"
    status_code = 504
    retryable = True


# -- RESULTS --

@dataclass
class TransitionResult:
    entity_type: str
    entity_id: int
    entity_number: str | None
    status: str | None
    version: int | None
    stage: dict
    history_entry: dict
    auto_transitions: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "entity_number": self.entity_number,
            "status": self.status,
            "version": self.version,
            "stage": self.stage,
            "history_entry": self.history_entry,
            "auto_transitions": self.auto_transitions,
        }


@dataclass
class ValidationResult:
    valid: bool
    reason: str | None = None
    message: str | None = None
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {"valid": self.valid}
        if not self.valid:
            data.update({"reason": self.reason, "message": self.message, "details": self.details})
        else:
            data["details"] = self.details
        return data


@dataclass
class HistoryPage:
    entity_type: str
    entity_id: int
    entries: list[WorkflowHistoryEntry]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0

    def to_dict(self) -> dict:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "history": [e.to_dict() for e in self.entries],
            "pagination": {
                "page": self.page,
                "limit": self.limit,
                "total": self.total,
                "pages": self.pages,
            },
        }


@dataclass(frozen=True)
class _Plan:
    adapter: EntityAdapter
    entity: object
    user: object
    rule: WorkflowTransition
    action: str


@dataclass(frozen=True)
class _Step:
    rule: WorkflowTransition
    from_stage: WorkflowStage
    to_stage: WorkflowStage
    entry: WorkflowHistoryEntry
    changes: list
    is_auto: bool


# -- ENGINE --

class WorkflowEngine:
    """
    Executes and validates stage transitions.

    Collaborators are injected so tests can swap the sinks or the clock;
    build_workflow_engine() wires the SQL-backed defaults.
    """

    def __init__(
        self,
        *,
        stages,
        transitions,
        assignments,
        users,
        history,
        conditions: ConditionEvaluator,
        audit_sink: AuditSink,
        notification_sink: NotificationSink,
        max_auto_transitions: int = 10,
        request_timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.stages = stages
        self.transitions = transitions
        self.assignments = assignments
        self.users = users
        self.history = history
        self.conditions = conditions
        self.audit_sink = audit_sink
        self.notification_sink = notification_sink
        self.max_auto_transitions = max_auto_transitions
        self.request_timeout_seconds = request_timeout_seconds
        self._clock = clock

    # ---- commands ----

    def execute_transition(
        self,
        entity_type: str,
        entity_id: int,
        action: str,
        acting_user_id: int,
        *,
        target_stage: int | str | None = None,
        remarks: str | None = None,
        fields: dict | None = None,
        expected_version: int | None = None,
    ) -> TransitionResult:
        """
        Move an entity along the rule matching (current stage, action).

        Raises:
            ValidationError: unknown entity type or malformed input
            NotFoundError: entity, user or current stage missing/inactive
            ForbiddenError: user lacks a valid grant or required permissions
            TransitionRejectedError: invalid action, no route, missing fields,
                condition not met
            ConcurrentModificationError: entity changed since it was read
            WorkflowLoopError: auto-transition chain too deep
            RequestTimeoutError: request time limit or database lock wait exceeded
        """
        started = self._clock()
        fields = dict(fields or {})
        try:
            plan = self._plan(
                entity_type, entity_id, action, acting_user_id,
                target_stage=target_stage, remarks=remarks, fields=fields,
                expected_version=expected_version,
            )
            steps = [self._apply(plan.adapter, plan.entity, plan.user, plan.rule,
                                 action=plan.action, remarks=remarks, fields=fields, is_auto=False)]
            steps.extend(self._follow_auto_rules(plan.adapter, plan.entity, plan.user, started))
            self._check_deadline(started)
            db.session.commit()
        except ForbiddenError as exc:
            db.session.rollback()
            log_security_event(
                acting_user_id,
                "STAGE_ACTION_DENIED",
                success=False,
                resource=entity_type,
                action=action,
                reason=exc.message,
            )
            raise
        except DomainError:
            db.session.rollback()
            raise
        except (StaleDataError, IntegrityError) as exc:
            db.session.rollback()
            raise ConcurrentModificationError(
                f"{entity_type} {entity_id} was modified concurrently; reload and retry",
                details={"entity_type": entity_type, "entity_id": entity_id},
            ) from exc
        except OperationalError as exc:
            db.session.rollback()
            raise RequestTimeoutError(
                "Database did not respond in time; retry the request",
                details={"entity_type": entity_type, "entity_id": entity_id},
            ) from exc
        except Exception:
            db.session.rollback()
            raise

        entity = plan.entity
        result = TransitionResult(
            entity_type=entity_type,
            entity_id=entity.id,
            entity_number=plan.adapter.number_of(entity),
            status=getattr(entity, "status", None),
            version=getattr(entity, "version_id", None),
            stage=steps[-1].to_stage.to_dict(),
            history_entry=steps[0].entry.to_dict(),
            auto_transitions=[s.entry.to_dict() for s in steps[1:]],
        )
        current_app.logger.info(
            "Workflow %s %s: %s by user %s (%s)",
            entity_type, entity.id, plan.action, plan.user.id,
            " -> ".join([steps[0].from_stage.code] + [s.to_stage.code for s in steps]),
        )

        for step in steps:
            self._after_commit(plan.adapter, entity, plan.user, step, remarks)
        return result

    def validate_workflow_action(
        self,
        entity_type: str,
        entity_id: int,
        action: str,
        acting_user_id: int,
        *,
        target_stage: int | str | None = None,
        remarks: str | None = None,
        fields: dict | None = None,
    ) -> ValidationResult:
        """Run the read-only checks of execute_transition. Never raises for a domain failure."""
        try:
            plan = self._plan(
                entity_type, entity_id, action, acting_user_id,
                target_stage=target_stage, remarks=remarks, fields=dict(fields or {}),
            )
        except TransitionRejectedError as exc:
            return ValidationResult(False, exc.reason, exc.message, exc.details)
        except DomainError as exc:
            return ValidationResult(False, exc.code, exc.message, exc.details)
        return ValidationResult(True, details={
            "from_stage": plan.rule.from_stage.code,
            "to_stage": plan.rule.to_stage.code,
            "transition_id": plan.rule.id,
        })

    # ---- queries ----

    def get_workflow_history(self, entity_type: str, entity_id: int, page=1, limit=20) -> HistoryPage:
        """
        Reverse-chronological history of one entity.

        Unknown entity types are a ValidationError; an entity with no history
        (or no longer present) yields an empty page.
        """
        get_adapter(entity_type)
        v = Violations()
        entity_id = coerce_int(v, "entity_id", entity_id, minimum=1)
        page = coerce_int(v, "page", page, minimum=1)
        limit = coerce_int(v, "limit", limit, minimum=1)
        if limit is not None and limit > HISTORY_MAX_LIMIT:
            v.add("limit", f"must be <= {HISTORY_MAX_LIMIT}")
        v.raise_if_any()

        entries, total = self.history.page(entity_type, entity_id, page=page, limit=limit)
        return HistoryPage(entity_type, entity_id, entries, page, limit, total)

    def get_workflow_visualization(self, fmt: str = "json") -> dict:
        graph = build_graph(self.stages.list_active(), self.transitions.list_all())
        return render(graph, fmt)

    # ---- planning ----

    def _plan(self, entity_type, entity_id, action, acting_user_id, *, target_stage=None,
              remarks=None, fields=None, expected_version=None) -> _Plan:
        adapter = get_adapter(entity_type)
        action = (action or "").strip().lower()
        if not action:
            raise ValidationError([{"field": "action", "message": "is required"}])

        entity = adapter.load(entity_id)
        if entity is None:
            raise NotFoundError(f"{entity_type} {entity_id} not found",
                                details={"entity_type": entity_type, "entity_id": entity_id})

        user = self.users.get(acting_user_id)
        if user is None:
            raise NotFoundError(f"User {acting_user_id} not found", details={"user_id": acting_user_id})
        if not user.is_active:
            raise ForbiddenError("User account is inactive", details={"user_id": user.id})

        if expected_version is not None and getattr(entity, "version_id", None) != expected_version:
            raise ConcurrentModificationError(
                f"{entity_type} {entity.id} is at version {entity.version_id}, not {expected_version}",
                details={"expected_version": expected_version, "current_version": entity.version_id},
            )

        stage = self.stages.get(entity.current_stage_id) if entity.current_stage_id else None
        if stage is None or not stage.is_active:
            raise NotFoundError(
                f"Current stage of {entity_type} {entity.id} is missing or inactive",
                details={"stage_id": entity.current_stage_id},
            )

        if action not in (stage.allowed_actions or []):
            raise InvalidActionError(
                f"Action {action!r} is not allowed in stage {stage.code}",
                details={"stage": stage.code, "action": action,
                         "allowed_actions": list(stage.allowed_actions or [])},
            )

        missing = self.assignments.missing_permissions(user.id, stage, action)
        if missing is None:
            raise ForbiddenError(
                f"No valid stage permission for {stage.code}",
                details={"stage": stage.code, "action": action},
            )
        if missing:
            raise ForbiddenError(
                f"Missing permissions for {action} in {stage.code}: {', '.join(missing)}",
                details={"stage": stage.code, "action": action, "missing_permissions": missing},
            )

        payload = dict(fields or {})
        if remarks is not None:
            payload["remarks"] = remarks
        context = {**adapter.snapshot(entity), **payload}

        rule = self._resolve_rule(stage, action, target_stage, payload, context)
        return _Plan(adapter=adapter, entity=entity, user=user, rule=rule, action=action)

    def _resolve_rule(self, stage, action, target_stage, payload, context) -> WorkflowTransition:
        candidates: dict[int, WorkflowTransition] = {}
        for rule in self.transitions.outgoing(stage.id, action):
            if rule.to_stage is None or not rule.to_stage.is_active:
                continue
            # Lowest id wins among rules sharing a destination
            candidates.setdefault(rule.to_stage_id, rule)
        rules = list(candidates.values())

        if target_stage is not None:
            rules = [r for r in rules if self._matches_target(r.to_stage, target_stage)]
            if not rules:
                raise NoRouteError(
                    f"No {action!r} transition from {stage.code} to {target_stage}",
                    details={"stage": stage.code, "action": action, "target_stage": target_stage},
                )
        if not rules:
            raise NoRouteError(
                f"No {action!r} transition configured from {stage.code}",
                details={"stage": stage.code, "action": action},
            )

        if len(rules) == 1:
            rule = rules[0]
            self._check_required_fields(rule, payload)
            self._check_conditions(rule, context)
            return rule

        # Several destinations: the conditions pick the route
        passing = [r for r in rules if self._conditions_pass(r, context)]
        if not passing:
            raise ConditionNotMetError(
                f"No {action!r} route from {stage.code} matches the entity state",
                details={"stage": stage.code, "action": action,
                         "candidates": [r.to_stage.code for r in rules]},
            )
        if len(passing) > 1:
            raise NoRouteError(
                f"Action {action!r} from {stage.code} is ambiguous; pass target_stage",
                reason="AMBIGUOUS_ROUTE",
                details={"stage": stage.code, "action": action,
                         "candidates": [r.to_stage.code for r in passing]},
            )
        self._check_required_fields(passing[0], payload)
        return passing[0]

    @staticmethod
    def _matches_target(stage: WorkflowStage, target) -> bool:
        if isinstance(target, int) and not isinstance(target, bool):
            return stage.id == target
        text = str(target).strip()
        if text.isdigit():
            return stage.id == int(text)
        return stage.code == text.upper()

    @staticmethod
    def _check_required_fields(rule: WorkflowTransition, payload: dict) -> None:
        missing = [name for name in (rule.required_fields or []) if is_blank(payload.get(name))]
        if missing:
            raise MissingFieldError(missing, details={"transition_id": rule.id})

    def _conditions_pass(self, rule: WorkflowTransition, context: dict) -> bool:
        return not rule.conditions or self.conditions.evaluate(rule.conditions, context)

    def _check_conditions(self, rule: WorkflowTransition, context: dict) -> None:
        if not self._conditions_pass(rule, context):
            raise ConditionNotMetError(
                f"Conditions for {rule.from_stage.code} -> {rule.to_stage.code} are not met",
                details={"transition_id": rule.id, "conditions": rule.conditions},
            )

    # ---- applying ----

    def _apply(self, adapter, entity, user, rule, *, action, remarks, fields, is_auto) -> _Step:
        from_stage, to_stage = rule.from_stage, rule.to_stage
        changes = adapter.apply_fields(entity, fields) if fields else []
        changes.append({"field": "current_stage", "old": from_stage.code, "new": to_stage.code})
        entity.current_stage_id = to_stage.id

        status = adapter.status_for(to_stage.code)
        if status and status != entity.status:
            changes.append({"field": "status", "old": entity.status, "new": status})
            entity.status = status
        # Always touch the row so the version column moves even on a self-loop
        entity.updated_at = utcnow()

        entry = self.history.append(
            entity_type=adapter.entity_type,
            entity_id=entity.id,
            sequence=self.history.next_sequence(adapter.entity_type, entity.id),
            from_stage_id=from_stage.id,
            stage_id=to_stage.id,
            transition_id=rule.id,
            action=action,
            action_by_user_id=user.id,
            remarks=remarks,
            changes=changes,
            is_auto=is_auto,
        )
        if adapter.on_transition is not None:
            adapter.on_transition(entity, from_stage, to_stage, action)
        db.session.flush()
        return _Step(rule=rule, from_stage=from_stage, to_stage=to_stage, entry=entry,
                     changes=changes, is_auto=is_auto)

    def _follow_auto_rules(self, adapter, entity, user, started) -> list[_Step]:
        steps: list[_Step] = []
        while True:
            self._check_deadline(started)
            rule = self._next_auto_rule(adapter, entity)
            if rule is None:
                return steps
            if len(steps) >= self.max_auto_transitions:
                raise WorkflowLoopError(
                    f"Auto-transition chain exceeded {self.max_auto_transitions} steps",
                    details={
                        "entity_type": adapter.entity_type,
                        "entity_id": entity.id,
                        "path": [s.to_stage.code for s in steps],
                    },
                )
            steps.append(self._apply(adapter, entity, user, rule, action=rule.action,
                                     remarks=None, fields=None, is_auto=True))

    def _next_auto_rule(self, adapter, entity) -> WorkflowTransition | None:
        context = adapter.snapshot(entity)
        for rule in self.transitions.auto_rules(entity.current_stage_id):
            if rule.to_stage is None or not rule.to_stage.is_active:
                continue
            if any(is_blank(context.get(name)) for name in (rule.required_fields or [])):
                continue
            if self._conditions_pass(rule, context):
                return rule
        return None

    def _check_deadline(self, started: float) -> None:
        if not self.request_timeout_seconds:
            return
        elapsed = self._clock() - started
        if elapsed > self.request_timeout_seconds:
            raise RequestTimeoutError(
                f"Transition exceeded the {self.request_timeout_seconds}s request time limit",
                details={"elapsed_seconds": round(elapsed, 3)},
            )

    # ---- side effects ----

    def _after_commit(self, adapter, entity, user, step: _Step, remarks) -> None:
        entity_id = entity.id
        entity_number = None
        try:
            entity_number = adapter.number_of(entity)
            self.audit_sink.record(
                step.entry.action,
                adapter.entity_type,
                entity_id,
                user,
                step.changes,
                context={
                    "from_stage": step.from_stage.code,
                    "to_stage": step.to_stage.code,
                    "entity_number": entity_number,
                    "transition_id": step.rule.id,
                    "is_auto": step.is_auto,
                    "remarks": remarks if not step.is_auto else None,
                },
            )
        except Exception:
            logger.exception("Audit record failed for %s %s", adapter.entity_type, entity_id)

        try:
            recipients = list(self.assignments.users_with_valid_grant(step.to_stage.id))
            creator_id = getattr(entity, "created_by_user_id", None)
            if creator_id:
                recipients.append(creator_id)
            self.notification_sink.dispatch(
                step.rule.notification_template,
                list(dict.fromkeys(recipients)),
                {
                    "entity_type": adapter.entity_type,
                    "entity_id": entity_id,
                    "entity_number": entity_number or f"#{entity_id}",
                    "from_stage": step.from_stage.code,
                    "to_stage": step.to_stage.code,
                    "to_stage_name": step.to_stage.name,
                    "action": step.entry.action,
                    "actor": user.display_name,
                    "remarks": (remarks if not step.is_auto else None) or "",
                },
            )
        except Exception:
            logger.exception("Notification dispatch failed for %s %s", adapter.entity_type, entity_id)


def build_workflow_engine(app) -> WorkflowEngine:
    """Wire the SQL repositories and configured sinks; store on app.extensions."""
    engine = WorkflowEngine(
        stages=SqlStageRepository(),
        transitions=SqlTransitionRepository(),
        assignments=SqlAssignmentRepository(),
        users=SqlUserRepository(),
        history=SqlHistoryRepository(),
        conditions=default_condition_evaluator(),
        audit_sink=DatabaseAuditSink(),
        notification_sink=build_notification_sink(app),
        max_auto_transitions=app.config.get("WORKFLOW_MAX_AUTO_TRANSITIONS", 10),
        request_timeout_seconds=app.config.get("WORKFLOW_REQUEST_TIMEOUT_SECONDS"),
    )
    app.extensions["workflow_engine"] = engine
    return engine


def get_engine() -> WorkflowEngine:
    return current_app.extensions["workflow_engine"]
