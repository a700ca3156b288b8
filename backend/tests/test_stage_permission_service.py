"""
Stage permission grant tests.

Verifies:
- Assign upserts one grant per (user, stage) and audits the change
- Expiry in the past is rejected; a null expiry never expires
- Revoke deactivates, partially or fully, and never deletes
- Bulk assignment applies each item independently
- can_perform_action covers inactive users/stages, disallowed actions,
  action-scoped permissions and grants on stages without requirements
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import DataError

from pharmaflow.extensions import db
from pharmaflow.models import AuditLog, StagePermission
from pharmaflow.services import permission_service, stage_permission_service, stage_service
from pharmaflow.time_utils import utcnow
from pharmaflow.validation import NotFoundError, ValidationError

from conftest import grant, make_user, stage


def _ids(*names):
    return [p.id for p in permission_service.get_permissions_by_names(names)]


# =============================================================================
# ASSIGN
# =============================================================================


class TestAssign:

    def test_assign_creates_grant(self, db_session, admin):
        user = make_user("clerk")

        assignment = stage_permission_service.assign(
            {
                "user_id": user.id,
                "stage_id": stage("DRAFT").id,
                "permissions": _ids("po_view", "po_submit"),
                "remarks": "Cover for leave",
            },
            assigned_by=admin,
        )

        assert assignment.permission_names == {"po_view", "po_submit"}
        assert assignment.is_valid is True
        assert assignment.expiry_date is None
        assert assignment.assigned_by_user_id == admin.id

        data = assignment.to_dict()
        assert data["stage"]["code"] == "DRAFT"
        assert data["user"]["username"] == "clerk"
        assert data["is_expired"] is False

    def test_assign_new_pair_with_expired_session_state(self, db_session, admin):
        user = make_user("clerk")
        db.session.commit()
        db.session.expire_all()

        assignment = stage_permission_service.assign(
            {"user_id": user.id, "stage_id": stage("APPROVED").id, "permissions": _ids("po_view")},
            assigned_by=admin,
        )

        assert assignment.assigned_by_user_id == admin.id
        assert db.session.query(StagePermission).filter_by(user_id=user.id).count() == 1

    def test_reassign_replaces_in_place(self, db_session, admin):
        user = make_user("clerk")
        first = grant(user, "DRAFT", "po_view", "po_submit", assigned_by=admin)
        stage_permission_service.revoke(user.id, stage("DRAFT").id, revoked_by=admin)

        second = grant(user, "DRAFT", "po_cancel", assigned_by=admin)

        assert second.id == first.id
        assert second.is_active is True
        assert second.permission_names == {"po_cancel"}
        assert db.session.query(StagePermission).filter_by(user_id=user.id).count() == 1

    def test_empty_permission_list_is_legal(self, db_session, admin):
        user = make_user("clerk")
        assignment = grant(user, "DRAFT", assigned_by=admin)

        assert assignment.permission_names == set()
        assert stage_permission_service.can_perform_action(user.id, stage("DRAFT").id, "submit") is False

    def test_past_expiry_is_rejected(self, db_session, admin):
        user = make_user("clerk")
        with pytest.raises(ValidationError) as exc_info:
            grant(user, "DRAFT", "po_view", assigned_by=admin, expiry_date=utcnow() - timedelta(days=1))
        assert exc_info.value.errors[0]["field"] == "expiry_date"

    def test_iso_expiry_is_accepted(self, db_session, admin):
        user = make_user("clerk")
        future = (utcnow() + timedelta(days=30)).replace(microsecond=0)

        assignment = stage_permission_service.assign(
            {
                "user_id": user.id,
                "stage_id": stage("DRAFT").id,
                "permissions": _ids("po_view"),
                "expiry_date": future.isoformat() + "Z",
            },
            assigned_by=admin,
        )
        assert assignment.is_expired is False
        assert assignment.to_dict()["expiry_date"].endswith("Z")

    def test_unknown_ids_are_violations(self, db_session, admin):
        with pytest.raises(ValidationError) as exc_info:
            stage_permission_service.assign(
                {"user_id": 999999, "stage_id": 999999, "permissions": [999999]},
                assigned_by=admin,
            )
        fields = {e["field"] for e in exc_info.value.errors}
        assert fields == {"user_id", "stage_id", "permissions[0]"}

    def test_assignment_is_audited(self, db_session, admin):
        user = make_user("clerk")
        grant(user, "DRAFT", "po_view", assigned_by=admin)

        entries = db.session.query(AuditLog).filter_by(action="permission_changed").all()
        assert len(entries) == 1
        assert entries[0].performed_by_user_id == admin.id
        assert entries[0].entity_id == user.id
        assert entries[0].context == {"stage": "DRAFT"}
        assert {"field": "permissions", "old": None, "new": ["po_view"]} in entries[0].changes


# =============================================================================
# EXPIRY
# =============================================================================


class TestExpiry:

    def test_null_expiry_never_expires(self, db_session, admin):
        user = make_user("clerk")
        assignment = grant(user, "DRAFT", "po_view", assigned_by=admin)

        assert assignment.is_expired is False
        assert stage_permission_service.get_active_permissions(user.id, stage("DRAFT").id) is not None

    def test_expired_grant_is_not_active(self, db_session, admin):
        user = make_user("clerk")
        assignment = grant(user, "DRAFT", "po_view", "po_submit", "po_cancel", assigned_by=admin)
        assignment.expiry_date = utcnow() - timedelta(minutes=1)
        db.session.commit()

        draft = stage("DRAFT")
        assert stage_permission_service.get_active_permissions(user.id, draft.id) is None
        assert stage_permission_service.can_perform_action(user.id, draft.id, "submit") is False
        # Still visible to administrators, flagged as expired
        record = stage_permission_service.get_user_stage_permission(user.id, draft.id)
        assert record.is_expired is True
        assert user.id not in stage_permission_service.users_with_valid_grant(draft.id)

    def test_deactivate_expired(self, db_session, admin):
        user = make_user("clerk")
        expired = grant(user, "DRAFT", "po_view", assigned_by=admin)
        kept = grant(user, "APPROVED", "po_view", assigned_by=admin)
        expired.expiry_date = utcnow() - timedelta(days=2)
        db.session.commit()

        assert stage_permission_service.deactivate_expired() == 1
        assert db.session.get(StagePermission, expired.id).is_active is False
        assert db.session.get(StagePermission, kept.id).is_active is True
        assert stage_permission_service.deactivate_expired() == 0


# =============================================================================
# REVOKE
# =============================================================================


class TestRevoke:

    def test_revoke_whole_grant(self, db_session, admin):
        user = make_user("clerk")
        grant(user, "DRAFT", "po_view", "po_submit", assigned_by=admin)

        revoked = stage_permission_service.revoke(user.id, stage("DRAFT").id, revoked_by=admin)

        assert revoked.is_active is False
        assert revoked.permission_names == {"po_view", "po_submit"}
        assert stage_permission_service.get_active_permissions(user.id, stage("DRAFT").id) is None

    def test_revoke_subset_keeps_rest(self, db_session, admin):
        user = make_user("clerk")
        grant(user, "DRAFT", "po_view", "po_submit", "po_cancel", assigned_by=admin)

        revoked = stage_permission_service.revoke(user.id, stage("DRAFT").id, _ids("po_cancel"), revoked_by=admin)

        assert revoked.is_active is True
        assert revoked.permission_names == {"po_view", "po_submit"}

    def test_revoking_every_permission_deactivates(self, db_session, admin):
        user = make_user("clerk")
        grant(user, "DRAFT", "po_view", assigned_by=admin)

        revoked = stage_permission_service.revoke(user.id, stage("DRAFT").id, _ids("po_view"), revoked_by=admin)

        assert revoked.permission_names == set()
        assert revoked.is_active is False

    def test_revoke_without_grant_returns_none(self, db_session, admin):
        user = make_user("clerk")
        assert stage_permission_service.revoke(user.id, stage("DRAFT").id, revoked_by=admin) is None

    def test_inactive_grants_are_listed_on_request(self, db_session, admin):
        user = make_user("clerk")
        grant(user, "DRAFT", "po_view", assigned_by=admin)
        stage_permission_service.revoke(user.id, stage("DRAFT").id, revoked_by=admin)

        draft_id = stage("DRAFT").id
        assert stage_permission_service.list_stage_users(draft_id) == []
        assert len(stage_permission_service.list_stage_users(draft_id, include_inactive=True)) == 1
        assert len(stage_permission_service.list_user_assignments(user.id)) == 1


# =============================================================================
# BULK ASSIGN
# =============================================================================


class TestBulkAssign:

    def test_failures_do_not_roll_back_other_items(self, db_session, admin):
        first, second = make_user("first"), make_user("second")
        draft_id = stage("DRAFT").id

        outcomes = stage_permission_service.bulk_assign(
            [
                {"user_id": first.id, "stage_id": draft_id, "permissions": _ids("po_view")},
                {"user_id": 999999, "stage_id": draft_id, "permissions": _ids("po_view")},
                "not-an-object",
                {"user_id": second.id, "stage_id": draft_id, "permissions": _ids("po_view")},
            ],
            assigned_by=admin,
        )

        assert [o.ok for o in outcomes] == [True, False, False, True]
        assert outcomes[1].to_dict()["error"]["code"] == "VALIDATION_ERROR"
        assert outcomes[2].to_dict()["status"] == "error"
        assert outcomes[3].to_dict()["assignment"]["user"]["username"] == "second"
        assert sorted(stage_permission_service.users_with_valid_grant(draft_id)) == sorted([first.id, second.id])

    def test_storage_failure_is_reported_per_item(self, db_session, admin, monkeypatch):
        first, broken, last = make_user("first"), make_user("broken"), make_user("last")
        draft_id = stage("DRAFT").id
        broken_id = broken.id
        record = stage_permission_service.record_permission_change

        def failing_record(**kwargs):
            if kwargs["user_id"] == broken_id:
                raise DataError("INSERT INTO audit_logs", {}, Exception("value too long"))
            return record(**kwargs)

        monkeypatch.setattr(stage_permission_service, "record_permission_change", failing_record)
        outcomes = stage_permission_service.bulk_assign(
            [
                {"user_id": first.id, "stage_id": draft_id, "permissions": _ids("po_view")},
                {"user_id": broken_id, "stage_id": draft_id, "permissions": _ids("po_view")},
                {"user_id": last.id, "stage_id": draft_id, "permissions": _ids("po_view")},
            ],
            assigned_by=admin,
        )

        assert [o.ok for o in outcomes] == [True, False, True]
        failed = outcomes[1].to_dict()
        assert failed["status"] == "error"
        assert failed["error"]["code"] == "STORAGE_ERROR"
        assert failed["error"]["retryable"] is True
        assert sorted(stage_permission_service.users_with_valid_grant(draft_id)) == sorted([first.id, last.id])

    def test_empty_batch(self, db_session, admin):
        with pytest.raises(ValidationError):
            stage_permission_service.bulk_assign([], assigned_by=admin)


# =============================================================================
# CAN PERFORM ACTION
# =============================================================================


class TestCanPerformAction:

    def test_full_grant_allows_each_allowed_action(self, db_session, buyer):
        draft_id = stage("DRAFT").id
        for action in ("edit", "submit", "cancel"):
            assert stage_permission_service.can_perform_action(buyer.id, draft_id, action) is True

    def test_action_not_allowed_in_stage(self, db_session, buyer):
        assert stage_permission_service.can_perform_action(buyer.id, stage("DRAFT").id, "approve") is False

    def test_action_scoped_permissions(self, db_session, admin):
        user = make_user("half_approver")
        grant(user, "PENDING_APPROVAL", "po_view", "po_approve", assigned_by=admin)
        pending_id = stage("PENDING_APPROVAL").id

        assert stage_permission_service.can_perform_action(user.id, pending_id, "approve") is True
        assert stage_permission_service.can_perform_action(user.id, pending_id, "reject") is False
        assert stage_permission_service.missing_permissions(user.id, stage("PENDING_APPROVAL"), "return") == [
            "po_return"
        ]

    def test_unscoped_permission_applies_to_every_action(self, db_session, admin):
        user = make_user("no_view")
        grant(user, "PENDING_APPROVAL", "po_approve", "po_reject", "po_return", assigned_by=admin)

        assert stage_permission_service.can_perform_action(user.id, stage("PENDING_APPROVAL").id, "approve") is False

    def test_inactive_user_or_stage(self, db_session, buyer):
        draft = stage("DRAFT")
        draft.is_active = False
        db.session.commit()
        assert stage_permission_service.can_perform_action(buyer.id, draft.id, "submit") is False

        draft.is_active = True
        buyer.is_active = False
        db.session.commit()
        assert stage_permission_service.can_perform_action(buyer.id, draft.id, "submit") is False

    def test_stage_without_requirements_needs_a_grant(self, db_session, admin):
        intake = stage_service.create_stage({
            "name": "Intake", "code": "INTAKE", "sequence": 70, "allowed_actions": ["submit"],
        })
        user = make_user("walk_in")
        assert stage_permission_service.can_perform_action(user.id, intake.id, "submit") is False

        grant(user, "INTAKE", assigned_by=admin)
        assert stage_permission_service.missing_permissions(user.id, stage("INTAKE"), "submit") == []
        assert stage_permission_service.can_perform_action(user.id, intake.id, "submit") is True

    def test_revoked_grant_on_stage_without_requirements(self, db_session, admin):
        intake = stage_service.create_stage({
            "name": "Intake", "code": "INTAKE", "sequence": 70, "allowed_actions": ["submit"],
        })
        user = make_user("walk_in")
        grant(user, "INTAKE", assigned_by=admin)

        stage_permission_service.revoke(user.id, intake.id, revoked_by=admin)

        assert stage_permission_service.missing_permissions(user.id, stage("INTAKE"), "submit") is None
        assert stage_permission_service.can_perform_action(user.id, intake.id, "submit") is False

    def test_expired_grant_on_stage_without_requirements(self, db_session, admin):
        intake = stage_service.create_stage({
            "name": "Intake", "code": "INTAKE", "sequence": 70, "allowed_actions": ["submit"],
        })
        user = make_user("walk_in")
        assignment = grant(user, "INTAKE", assigned_by=admin)
        assignment.expiry_date = utcnow() - timedelta(minutes=1)
        db.session.commit()

        assert stage_permission_service.can_perform_action(user.id, intake.id, "submit") is False

    def test_unknown_ids_raise(self, db_session, buyer):
        with pytest.raises(NotFoundError):
            stage_permission_service.can_perform_action(999999, stage("DRAFT").id, "submit")
        with pytest.raises(NotFoundError):
            stage_permission_service.can_perform_action(buyer.id, 999999, "submit")
