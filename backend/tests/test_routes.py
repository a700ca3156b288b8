"""
HTTP API tests.

Verifies:
- Every workflow endpoint requires a bearer session (401 otherwise)
- Role permissions gate management, assignment and statistics routes
- Domain errors map to their status codes and error bodies
- Stage, transition, permission, workflow and procurement routes round-trip
"""

import pytest

from pharmaflow.extensions import db
from pharmaflow.models import SecurityEvent
from pharmaflow.services import permission_service

from conftest import auth_headers, grant, make_user, stage


def _ids(*names):
    return [p.id for p in permission_service.get_permissions_by_names(names)]


def _execute(client, headers, entity_id, action, **extra):
    body = {"entity_type": "purchase_order", "entity_id": entity_id, "action": action, **extra}
    return client.post("/api/workflow/execute", json=body, headers=headers)


NEW_STAGE = {
    "name": "Cold Chain Check",
    "code": "COLD_CHAIN",
    "sequence": 30,
    "allowed_actions": ["approve", "reject"],
}


# =============================================================================
# AUTHENTICATION
# =============================================================================


class TestAuthentication:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("get", "/api/workflow/stages"),
            ("post", "/api/workflow/execute"),
            ("post", "/api/workflow/permissions/check"),
            ("get", "/api/workflow/visualization"),
            ("get", "/api/purchase-orders/1"),
        ],
    )
    def test_missing_token(self, client, db_session, method, path):
        response = getattr(client, method)(path)

        assert response.status_code == 401
        assert response.json["code"] == "UNAUTHORIZED"

    def test_bad_token(self, client, db_session):
        response = client.get("/api/workflow/stages", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_deactivated_user_is_rejected(self, client, db_session):
        user = make_user("leaver", "viewer")
        headers = auth_headers(user)
        user.is_active = False
        db.session.commit()

        assert client.get("/api/workflow/stages", headers=headers).status_code == 401

    def test_health_needs_no_token(self, client, db_session):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.json["status"] == "healthy"
        assert set(response.json["checks"]) == {"database", "workflow"}


# =============================================================================
# ROLE PERMISSIONS
# =============================================================================


class TestRolePermissions:

    @pytest.mark.parametrize(
        "method,path,body",
        [
            ("post", "/api/workflow/stages", NEW_STAGE),
            ("post", "/api/workflow/transitions", {}),
            ("post", "/api/workflow/permissions/assign", {}),
            ("get", "/api/workflow/statistics", None),
            ("post", "/api/purchase-orders", {}),
        ],
    )
    def test_viewer_is_forbidden(self, client, viewer, viewer_headers, method, path, body):
        response = getattr(client, method)(path, json=body, headers=viewer_headers)

        assert response.status_code == 403
        assert response.json["code"] == "FORBIDDEN"
        assert response.json["retryable"] is False

    def test_denial_is_logged(self, client, viewer, viewer_headers):
        client.post("/api/workflow/stages", json=NEW_STAGE, headers=viewer_headers)

        event = db.session.query(SecurityEvent).filter_by(user_id=viewer.id).one()
        assert event.event_type == "PERMISSION_DENIED"
        assert event.resource == "/api/workflow/stages"

    def test_viewer_can_read(self, client, viewer_headers):
        assert client.get("/api/workflow/stages", headers=viewer_headers).status_code == 200
        assert client.get("/api/workflow/transitions", headers=viewer_headers).status_code == 200
        assert client.get("/api/workflow/visualization", headers=viewer_headers).status_code == 200


# =============================================================================
# STAGES
# =============================================================================


class TestStageRoutes:

    def test_list_in_sequence_order(self, client, admin_headers):
        all_stages = client.get("/api/workflow/stages", headers=admin_headers).json
        assert all_stages["count"] == len(all_stages["stages"])
        assert all_stages["stages"][0]["code"] == "DRAFT"

    def test_create_update_delete(self, client, admin_headers):
        created = client.post("/api/workflow/stages", json=NEW_STAGE, headers=admin_headers)
        assert created.status_code == 201
        stage_id = created.json["id"]
        assert created.json["is_active"] is True

        updated = client.put(
            f"/api/workflow/stages/{stage_id}", json={"name": "Cold Chain Review"}, headers=admin_headers
        )
        assert updated.status_code == 200
        assert updated.json["name"] == "Cold Chain Review"
        assert updated.json["code"] == "COLD_CHAIN"

        deleted = client.delete(f"/api/workflow/stages/{stage_id}", headers=admin_headers)
        assert deleted.status_code == 200
        assert client.get(f"/api/workflow/stages/{stage_id}", headers=admin_headers).status_code == 404

    def test_create_reports_all_errors(self, client, admin_headers):
        response = client.post(
            "/api/workflow/stages",
            json={"name": "", "code": "lower case", "sequence": 0, "allowed_actions": ["teleport"]},
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert response.json["code"] == "VALIDATION_ERROR"
        fields = {e["field"] for e in response.json["details"]["errors"]}
        assert {"name", "code", "sequence"} <= fields

    def test_duplicate_code_conflicts(self, client, admin_headers):
        body = dict(NEW_STAGE, code="DRAFT")
        assert client.post("/api/workflow/stages", json=body, headers=admin_headers).status_code == 409

    def test_delete_referenced_stage_conflicts(self, client, admin_headers, purchase_order):
        response = client.delete(f"/api/workflow/stages/{stage('DRAFT').id}", headers=admin_headers)

        assert response.status_code == 409
        assert response.json["code"] == "CONFLICT"

    def test_reorder(self, client, admin_headers):
        stage_id = client.post("/api/workflow/stages", json=NEW_STAGE, headers=admin_headers).json["id"]

        response = client.post(
            "/api/workflow/stages/reorder",
            json={"stages": [{"id": stage_id, "sequence": 40}]},
            headers=admin_headers,
        )

        assert response.status_code == 200
        moved = next(s for s in response.json["stages"] if s["id"] == stage_id)
        assert moved["sequence"] == 40
        assert response.json["stages"][-1]["id"] == stage_id

    def test_clone_starts_inactive(self, client, admin_headers):
        response = client.post(
            f"/api/workflow/stages/{stage('PENDING_APPROVAL').id}/clone",
            json={"name": "Second Approval", "code": "SECOND_APPROVAL"},
            headers=admin_headers,
        )

        assert response.status_code == 201
        assert response.json["code"] == "SECOND_APPROVAL"
        assert response.json["is_active"] is False
        assert response.json["allowed_actions"] == stage("PENDING_APPROVAL").allowed_actions

    def test_stage_transitions(self, client, admin_headers):
        response = client.get(f"/api/workflow/stages/{stage('DRAFT').id}/transitions", headers=admin_headers)

        assert response.status_code == 200
        outgoing = {(t["action"], t["to_stage"]["code"]) for t in response.json["outgoing"]}
        assert ("submit", "PENDING_APPROVAL") in outgoing
        assert any(t["from_stage"]["code"] == "PENDING_APPROVAL" for t in response.json["incoming"])


# =============================================================================
# TRANSITIONS
# =============================================================================


class TestTransitionRoutes:

    def _body(self, **overrides):
        body = {
            "from_stage_id": stage("DRAFT").id,
            "to_stage_id": stage("REJECTED").id,
            "action": "reject",
            "required_fields": ["remarks"],
        }
        body.update(overrides)
        return body

    def test_crud(self, client, admin_headers):
        created = client.post("/api/workflow/transitions", json=self._body(), headers=admin_headers)
        assert created.status_code == 201
        rule_id = created.json["id"]

        fetched = client.get(f"/api/workflow/transitions/{rule_id}", headers=admin_headers)
        assert fetched.json["to_stage"]["code"] == "REJECTED"

        updated = client.put(
            f"/api/workflow/transitions/{rule_id}",
            json={"notification_template": "entity_rejected"},
            headers=admin_headers,
        )
        assert updated.status_code == 200
        assert updated.json["notification_template"] == "entity_rejected"

        assert client.delete(f"/api/workflow/transitions/{rule_id}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/workflow/transitions/{rule_id}", headers=admin_headers).status_code == 404

    def test_duplicate_rule_conflicts(self, client, admin_headers):
        client.post("/api/workflow/transitions", json=self._body(), headers=admin_headers)
        response = client.post("/api/workflow/transitions", json=self._body(), headers=admin_headers)
        assert response.status_code == 409

    def test_unknown_stage(self, client, admin_headers):
        response = client.post("/api/workflow/transitions", json=self._body(to_stage_id=999999), headers=admin_headers)
        assert response.status_code == 404

    def test_filter_auto_transitions(self, client, admin_headers):
        response = client.get("/api/workflow/transitions?auto_transition=true", headers=admin_headers)

        assert response.status_code == 200
        assert [(t["from_stage"]["code"], t["to_stage"]["code"]) for t in response.json["transitions"]] == [
            ("WH_APPROVED", "WH_COMPLETED")
        ]


# =============================================================================
# STAGE PERMISSIONS
# =============================================================================


class TestStagePermissionRoutes:

    def test_assign_and_revoke(self, client, admin_headers):
        clerk = make_user("clerk")
        draft_id = stage("DRAFT").id

        assigned = client.post(
            "/api/workflow/permissions/assign",
            json={"user_id": clerk.id, "stage_id": draft_id, "permissions": _ids("po_view", "po_submit")},
            headers=admin_headers,
        )
        assert assigned.status_code == 200
        assert {p["name"] for p in assigned.json["permissions"]} == {"po_view", "po_submit"}

        revoked = client.post(
            "/api/workflow/permissions/revoke",
            json={"user_id": clerk.id, "stage_id": draft_id, "permissions": _ids("po_submit")},
            headers=admin_headers,
        )
        assert revoked.status_code == 200
        assert [p["name"] for p in revoked.json["permissions"]] == ["po_view"]
        assert revoked.json["is_active"] is True

    def test_revoke_missing_grant(self, client, admin_headers):
        clerk = make_user("clerk")
        response = client.post(
            "/api/workflow/permissions/revoke",
            json={"user_id": clerk.id, "stage_id": stage("DRAFT").id},
            headers=admin_headers,
        )
        assert response.status_code == 404

    def test_bulk_assign_summary(self, client, admin_headers):
        clerk = make_user("clerk")
        draft_id = stage("DRAFT").id

        response = client.post(
            "/api/workflow/permissions/bulk-assign",
            json={"assignments": [
                {"user_id": clerk.id, "stage_id": draft_id, "permissions": _ids("po_view")},
                {"user_id": 999999, "stage_id": draft_id, "permissions": []},
            ]},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json["summary"] == {"total": 2, "succeeded": 1, "failed": 1}
        assert [r["status"] for r in response.json["results"]] == ["success", "error"]

    def test_check_own_capability(self, client, buyer):
        response = client.post(
            "/api/workflow/permissions/check",
            json={"stage_id": stage("DRAFT").id, "action": "Submit"},
            headers=auth_headers(buyer),
        )

        assert response.status_code == 200
        assert response.json["user_id"] == buyer.id
        assert response.json["action"] == "submit"
        assert response.json["allowed"] is True
        assert "po_submit" in response.json["permissions"]

    def test_check_other_user_needs_view(self, client, buyer, admin_headers, outsider_headers):
        body = {"user_id": buyer.id, "stage_id": stage("PENDING_APPROVAL").id, "action": "approve"}

        assert client.post("/api/workflow/permissions/check", json=body, headers=outsider_headers).status_code == 403

        response = client.post("/api/workflow/permissions/check", json=body, headers=admin_headers)
        assert response.status_code == 200
        assert response.json["allowed"] is False
        assert response.json["permissions"] == []

    def test_check_requires_stage_and_action(self, client, outsider_headers):
        response = client.post("/api/workflow/permissions/check", json={}, headers=outsider_headers)

        assert response.status_code == 400
        assert {e["field"] for e in response.json["details"]["errors"]} == {"stage_id", "action"}

    def test_user_and_stage_views(self, client, admin, admin_headers):
        clerk = make_user("clerk")
        grant(clerk, "DRAFT", "po_view", assigned_by=admin)
        draft_id = stage("DRAFT").id

        pair = client.get(f"/api/workflow/permissions/user/{clerk.id}/stage/{draft_id}", headers=admin_headers)
        assert pair.json["assignment"]["stage"]["code"] == "DRAFT"

        nothing = client.get(
            f"/api/workflow/permissions/user/{clerk.id}/stage/{stage('APPROVED').id}", headers=admin_headers
        )
        assert nothing.json["assignment"] is None

        listing = client.get(f"/api/workflow/permissions/user/{clerk.id}", headers=admin_headers)
        assert listing.json["count"] == 1

        users = client.get(f"/api/workflow/permissions/stage/{draft_id}/users", headers=admin_headers)
        assert users.json["count"] == 1
        assert users.json["summary"]["valid"] == 1


# =============================================================================
# WORKFLOW
# =============================================================================


class TestWorkflowRoutes:

    def test_execute_submit(self, client, buyer, purchase_order):
        response = _execute(client, auth_headers(buyer), purchase_order.id, "submit", remarks="Please approve")

        assert response.status_code == 200
        assert response.json["stage"]["code"] == "PENDING_APPROVAL"
        assert response.json["status"] == "pending_approval"
        assert response.json["version"] == 2
        assert response.json["entity_number"] == "PO-000001"
        assert response.json["history_entry"]["action"] == "submit"
        assert response.json["auto_transitions"] == []

    def test_execute_without_stage_grant(self, client, purchase_order, viewer_headers):
        response = _execute(client, viewer_headers, purchase_order.id, "submit")

        assert response.status_code == 403
        assert response.json["code"] == "FORBIDDEN"

    def test_execute_missing_required_field(self, client, buyer, purchase_order):
        response = _execute(client, auth_headers(buyer), purchase_order.id, "cancel")

        assert response.status_code == 422
        assert response.json["reason"] == "MISSING_FIELDS"
        assert response.json["details"]["missing_fields"] == ["remarks"]

    def test_execute_invalid_action(self, client, buyer, purchase_order):
        response = _execute(client, auth_headers(buyer), purchase_order.id, "approve")

        assert response.status_code == 422
        assert response.json["reason"] == "INVALID_ACTION"

    def test_execute_stale_version(self, client, buyer, purchase_order):
        response = _execute(client, auth_headers(buyer), purchase_order.id, "submit", expected_version=7)

        assert response.status_code == 409
        assert response.json["code"] == "CONCURRENT_MODIFICATION"
        assert response.json["retryable"] is True

    def test_execute_malformed_request(self, client, buyer):
        response = client.post(
            "/api/workflow/execute",
            json={"entity_id": "seven", "fields": [1, 2], "target_stage": True},
            headers=auth_headers(buyer),
        )

        assert response.status_code == 400
        fields = {e["field"] for e in response.json["details"]["errors"]}
        assert fields == {"entity_type", "entity_id", "action", "fields", "target_stage"}

    def test_execute_unknown_entity(self, client, buyer):
        assert _execute(client, auth_headers(buyer), 999999, "submit").status_code == 404

    def test_validate(self, client, buyer, purchase_order):
        headers = auth_headers(buyer)
        body = {"entity_type": "purchase_order", "entity_id": purchase_order.id}

        ok = client.post("/api/workflow/validate", json=dict(body, action="submit"), headers=headers)
        assert ok.status_code == 200
        assert ok.json["valid"] is True

        rejected = client.post("/api/workflow/validate", json=dict(body, action="cancel"), headers=headers)
        assert rejected.status_code == 200
        assert rejected.json == {
            "valid": False,
            "reason": "MISSING_FIELDS",
            "message": rejected.json["message"],
            "details": rejected.json["details"],
        }

    def test_history(self, client, buyer, purchase_order, admin_headers):
        _execute(client, auth_headers(buyer), purchase_order.id, "submit")

        response = client.get(f"/api/workflow/history/purchase_order/{purchase_order.id}", headers=admin_headers)

        assert response.status_code == 200
        assert response.json["pagination"] == {"page": 1, "limit": 20, "total": 1, "pages": 1}
        entry = response.json["history"][0]
        assert entry["action"] == "submit"
        assert entry["from_stage"]["code"] == "DRAFT"
        assert entry["stage"]["code"] == "PENDING_APPROVAL"

    @pytest.mark.parametrize("query", ["limit=500", "limit=0", "page=x"])
    def test_history_bad_query(self, client, purchase_order, admin_headers, query):
        response = client.get(
            f"/api/workflow/history/purchase_order/{purchase_order.id}?{query}", headers=admin_headers
        )
        assert response.status_code == 400

    def test_history_unknown_type(self, client, admin_headers):
        assert client.get("/api/workflow/history/spaceship/1", headers=admin_headers).status_code == 400

    def test_visualization_formats(self, client, admin_headers):
        mermaid = client.get("/api/workflow/visualization?format=mermaid", headers=admin_headers)
        assert mermaid.status_code == 200
        assert mermaid.json["format"] == "mermaid"
        assert mermaid.json["content"].startswith("flowchart TD")

        assert client.get("/api/workflow/visualization?format=svg", headers=admin_headers).status_code == 400

    def test_statistics(self, client, buyer, purchase_order, admin_headers):
        response = client.get("/api/workflow/statistics", headers=admin_headers)

        assert response.status_code == 200
        assert response.json["entity_type"] == "purchase_order"
        assert response.json["total"] == 1
        assert [(s["stage_code"], s["count"]) for s in response.json["statistics"]] == [("DRAFT", 1)]


# =============================================================================
# PROCUREMENT
# =============================================================================


class TestProcurementRoutes:

    def test_create_and_fetch_purchase_order(self, client, buyer):
        headers = auth_headers(buyer)
        created = client.post(
            "/api/purchase-orders",
            json={"supplier_name": "Acme Pharma", "lines": [{"product_name": "Saline 1L", "quantity": 12}]},
            headers=headers,
        )

        assert created.status_code == 201
        assert created.json["current_stage"]["code"] == "DRAFT"

        fetched = client.get(f"/api/purchase-orders/{created.json['id']}", headers=headers)
        assert fetched.status_code == 200
        assert fetched.json["po_number"] == created.json["po_number"]

    def test_unknown_purchase_order(self, client, buyer):
        assert client.get("/api/purchase-orders/999999", headers=auth_headers(buyer)).status_code == 404

    def test_invalid_purchase_order(self, client, buyer):
        response = client.post("/api/purchase-orders", json={"lines": []}, headers=auth_headers(buyer))
        assert response.status_code == 400
