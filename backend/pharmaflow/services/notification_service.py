# Overview: Notification templates and sinks for committed workflow transitions.

"""
Notification dispatch

The engine hands every committed transition to a NotificationSink. Sinks
must never block the request or raise into it:

- ThreadedNotificationSink: writes Notification rows from a worker pool
- LoggingNotificationSink: logs the rendered message only
- InMemoryNotificationSink: keeps dispatches in a list (tests)

NOTIFICATION_BACKEND selects one of database / log / memory.
"""

from __future__ import annotations

import atexit
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Protocol

from ..extensions import db
from ..models import Notification
from pharmaflow.time_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationTemplate:
    name: str
    type: str
    title: str
    message: str
    priority: str = "medium"

    def render(self, context: dict) -> dict:
        values = _SafeDict(context)
        return {
            "template": self.name,
            "type": self.type,
            "title": self.title.format_map(values),
            "message": self.message.format_map(values),
            "priority": self.priority,
        }


class _SafeDict(dict):
    def __missing__(self, key):
        return "{" + key + "}"


DEFAULT_TEMPLATE = NotificationTemplate(
    name="workflow_update",
    type="system_alert",
    title="{entity_number} moved to {to_stage_name}",
    message="{actor} performed {action} on {entity_type} {entity_number} ({from_stage} -> {to_stage}).",
    priority="low",
)

TEMPLATES: dict[str, NotificationTemplate] = {
    t.name: t for t in (
        DEFAULT_TEMPLATE,
        NotificationTemplate(
            name="approval_required",
            type="approval_required",
            title="Approval required: {entity_number}",
            message="{entity_type} {entity_number} is waiting in {to_stage_name}. Submitted by {actor}.",
            priority="high",
        ),
        NotificationTemplate(
            name="entity_returned",
            type="approval_required",
            title="{entity_number} returned for revision",
            message="{actor} returned {entity_number} to {to_stage_name}: {remarks}",
        ),
        NotificationTemplate(
            name="entity_rejected",
            type="system_alert",
            title="{entity_number} rejected",
            message="{actor} rejected {entity_type} {entity_number}: {remarks}",
            priority="high",
        ),
        NotificationTemplate(
            name="qc_assignment",
            type="qc_assignment",
            title="Quality check pending: {entity_number}",
            message="{entity_number} is ready for quality control.",
        ),
        NotificationTemplate(
            name="warehouse_assignment",
            type="warehouse_assignment",
            title="Warehouse approval pending: {entity_number}",
            message="{entity_number} passed QC and awaits warehouse approval.",
        ),
        NotificationTemplate(
            name="workflow_completed",
            type="workflow_completed",
            title="{entity_number} completed",
            message="{entity_type} {entity_number} reached {to_stage_name}.",
            priority="low",
        ),
    )
}


def register_template(template: NotificationTemplate) -> None:
    TEMPLATES[template.name] = template


def render(template_name: str | None, context: dict) -> dict:
    """Render a named template; unknown names fall back to the generic one."""
    template = TEMPLATES.get(template_name or "", DEFAULT_TEMPLATE)
    return template.render(context)


class NotificationSink(Protocol):
    def dispatch(self, template: str | None, recipients: list[int], context: dict) -> None:
        ...


def write_notifications(template: str | None, recipients: list[int], context: dict) -> int:
    """Insert one unread Notification per recipient and commit."""
    rendered = render(template, context)
    for user_id in dict.fromkeys(recipients):
        db.session.add(Notification(
            recipient_user_id=user_id,
            template=rendered["template"],
            type=rendered["type"],
            title=rendered["title"][:200],
            message=rendered["message"],
            priority=rendered["priority"],
            status="unread",
            reference_type=context.get("entity_type"),
            reference_id=context.get("entity_id"),
            created_at=utcnow(),
        ))
    db.session.commit()
    return len(dict.fromkeys(recipients))


class ThreadedNotificationSink:
    """Delivers notifications on a small thread pool inside an app context."""

    def __init__(self, app, max_workers: int = 2):
        self._app = app
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def dispatch(self, template, recipients, context) -> None:
        if not recipients:
            return
        future = self._executor.submit(self._deliver, template, list(recipients), dict(context))
        future.add_done_callback(self._done)

    def _deliver(self, template, recipients, context) -> int:
        with self._app.app_context():
            try:
                return write_notifications(template, recipients, context)
            except Exception:
                db.session.rollback()
                raise
            finally:
                db.session.remove()

    @staticmethod
    def _done(future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Notification delivery failed: %s", exc, exc_info=exc)

    def shutdown(self) -> None:
        """Wait for in-flight deliveries and stop the pool."""
        self._executor.shutdown(wait=True)


class LoggingNotificationSink:
    def dispatch(self, template, recipients, context) -> None:
        rendered = render(template, context)
        logger.info("Notify %s: %s", sorted(set(recipients)), rendered["title"])


class InMemoryNotificationSink:
    def __init__(self):
        self.sent: list[dict] = []

    def dispatch(self, template, recipients, context) -> None:
        self.sent.append({
            "template": template,
            "recipients": sorted(set(recipients)),
            "context": dict(context),
            "rendered": render(template, context),
        })


def build_notification_sink(app) -> NotificationSink:
    backend = (app.config.get("NOTIFICATION_BACKEND") or "database").lower()
    if backend == "memory":
        return InMemoryNotificationSink()
    if backend == "log":
        return LoggingNotificationSink()
    if backend == "database":
        sink = ThreadedNotificationSink(app, max_workers=app.config.get("NOTIFICATION_MAX_WORKERS", 2))
        atexit.register(sink.shutdown)
        return sink
    raise ValueError(f"Unknown NOTIFICATION_BACKEND: {backend}")
