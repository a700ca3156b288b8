"""
Notification template and sink tests.
"""

import logging

import pytest

from pharmaflow.extensions import db
from pharmaflow.models import Notification
from pharmaflow.services import notification_service
from pharmaflow.services.notification_service import (
    InMemoryNotificationSink,
    LoggingNotificationSink,
    NotificationTemplate,
    ThreadedNotificationSink,
    build_notification_sink,
    register_template,
    render,
    write_notifications,
)

from conftest import make_user


CONTEXT = {
    "entity_type": "purchase_order",
    "entity_id": 7,
    "entity_number": "PO-000007",
    "from_stage": "DRAFT",
    "to_stage": "PENDING_APPROVAL",
    "to_stage_name": "Pending Approval",
    "action": "submit",
    "actor": "Pat Buyer",
    "remarks": "",
}


class TestTemplates:

    def test_named_template(self):
        rendered = render("approval_required", CONTEXT)

        assert rendered["template"] == "approval_required"
        assert rendered["title"] == "Approval required: PO-000007"
        assert rendered["priority"] == "high"
        assert "Submitted by Pat Buyer" in rendered["message"]

    @pytest.mark.parametrize("name", [None, "", "no_such_template"])
    def test_unknown_name_falls_back_to_generic(self, name):
        rendered = render(name, CONTEXT)
        assert rendered["template"] == "workflow_update"
        assert rendered["title"] == "PO-000007 moved to Pending Approval"

    def test_missing_placeholder_is_left_in_place(self):
        rendered = render("entity_returned", {"entity_number": "PO-000007"})
        assert rendered["message"] == "{actor} returned PO-000007 to {to_stage_name}: {remarks}"

    def test_register_template(self, monkeypatch):
        monkeypatch.setattr(notification_service, "TEMPLATES", dict(notification_service.TEMPLATES))
        register_template(NotificationTemplate(
            name="cold_chain_alert",
            type="system_alert",
            title="Cold chain check for {entity_number}",
            message="{to_stage_name}",
            priority="urgent",
        ))

        rendered = render("cold_chain_alert", CONTEXT)
        assert rendered["title"] == "Cold chain check for PO-000007"
        assert rendered["priority"] == "urgent"


class TestSinks:

    def test_write_notifications_one_row_per_recipient(self, db_session):
        first, second = make_user("first"), make_user("second")

        count = write_notifications("approval_required", [first.id, second.id, first.id], CONTEXT)

        rows = db.session.query(Notification).order_by(Notification.recipient_user_id).all()
        assert count == 2
        assert [r.recipient_user_id for r in rows] == sorted([first.id, second.id])
        assert rows[0].status == "unread"
        assert rows[0].reference_type == "purchase_order"
        assert rows[0].reference_id == 7

    def test_threaded_sink_writes_in_background(self, app, db_session):
        user = make_user("recipient")
        sink = ThreadedNotificationSink(app, max_workers=1)

        sink.dispatch("workflow_completed", [user.id], CONTEXT)
        sink.dispatch("workflow_completed", [], CONTEXT)
        sink.shutdown()

        db.session.expire_all()
        rows = db.session.query(Notification).filter_by(recipient_user_id=user.id).all()
        assert len(rows) == 1
        assert rows[0].title == "PO-000007 completed"

    def test_logging_sink(self, caplog):
        with caplog.at_level(logging.INFO, logger=notification_service.__name__):
            LoggingNotificationSink().dispatch("approval_required", [3, 1, 3], CONTEXT)
        assert "Notify [1, 3]: Approval required: PO-000007" in caplog.text

    def test_in_memory_sink_records_rendered_message(self):
        sink = InMemoryNotificationSink()
        sink.dispatch(None, [5, 2, 5], CONTEXT)

        assert sink.sent[0]["recipients"] == [2, 5]
        assert sink.sent[0]["rendered"]["template"] == "workflow_update"

    @pytest.mark.parametrize(
        "backend,sink_type",
        [("memory", InMemoryNotificationSink), ("LOG", LoggingNotificationSink)],
    )
    def test_backend_selection(self, app, monkeypatch, backend, sink_type):
        monkeypatch.setitem(app.config, "NOTIFICATION_BACKEND", backend)
        assert isinstance(build_notification_sink(app), sink_type)

    def test_unknown_backend(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "NOTIFICATION_BACKEND", "pigeon")
        with pytest.raises(ValueError):
            build_notification_sink(app)
