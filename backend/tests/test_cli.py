"""
CLI command tests.

Verifies:
- system init is idempotent and creates demo users with stage grants
- grant commands assign and revoke through the same service rules as the API
- workflow export prints the active graph
"""

from pharmaflow.extensions import db
from pharmaflow.models import StagePermission, User

from conftest import make_user, stage


def _run(app, *args):
    return app.test_cli_runner().invoke(args=list(args))


class TestSystemInit:

    def test_init_with_demo_users(self, app, db_session):
        result = _run(app, "system", "init", "--demo-users")

        assert result.exit_code == 0, result.output
        assert "DONE PharmaFlow initialized" in result.output
        usernames = {u.username for u in db.session.query(User).all()}
        assert {"admin", "procurement", "qa_inspector", "warehouse", "viewer"} <= usernames

        qa = db.session.query(User).filter_by(username="qa_inspector").one()
        qa_grants = {g.stage.code: g.permission_names for g in db.session.query(StagePermission).filter_by(user_id=qa.id)}
        assert "qc_approve" in qa_grants["QC_REVIEW"]
        # Only the overlap between role and stage requirements is granted
        assert qa_grants["DRAFT"] == {"po_view"}

    def test_init_twice_creates_nothing_new(self, app, db_session):
        _run(app, "system", "init")
        result = _run(app, "system", "init")

        assert result.exit_code == 0
        assert "PASS Workflow: 0 stages, 0 transitions created" in result.output


class TestGrantCommands:

    def test_assign_list_revoke(self, app, admin):
        make_user("clerk")

        assigned = _run(app, "grants", "assign", "clerk", "draft", "--perm", "po_view", "--perm", "po_submit")
        assert "PASS clerk@DRAFT: po_submit, po_view" in assigned.output

        listed = _run(app, "grants", "list", "--username", "clerk")
        assert "valid" in listed.output
        assert "Total: 1 grants" in listed.output

        revoked = _run(app, "grants", "revoke", "clerk", "DRAFT")
        assert "PASS clerk@DRAFT is inactive" in revoked.output

    def test_past_expiry_fails(self, app, admin):
        make_user("clerk")
        result = _run(app, "grants", "assign", "clerk", "DRAFT", "--perm", "po_view",
                      "--expires", "2000-01-01T00:00:00Z")

        assert result.output.startswith("FAIL")
        assert db.session.query(StagePermission).filter_by(stage_id=stage("DRAFT").id).count() == 0

    def test_unknown_stage(self, app, admin):
        make_user("clerk")
        result = _run(app, "grants", "assign", "clerk", "NOWHERE")
        assert "FAIL Stage 'NOWHERE' not found" in result.output

    def test_purge_inactive_grants(self, app, admin):
        make_user("clerk")
        _run(app, "grants", "assign", "clerk", "DRAFT", "--perm", "po_view")
        _run(app, "grants", "revoke", "clerk", "DRAFT")

        kept = _run(app, "maintenance", "purge-inactive-grants")
        assert "Deleted 0 inactive stage grants" in kept.output

        purged = _run(app, "maintenance", "purge-inactive-grants", "--retention-days=0")
        assert "Deleted 1 inactive stage grants" in purged.output


class TestWorkflowCommands:

    def test_export_mermaid(self, app, db_session):
        result = _run(app, "workflow", "export")

        assert result.exit_code == 0
        assert result.output.startswith("flowchart TD")
        assert "WH_APPROVED -.->|complete| WH_COMPLETED" in result.output

    def test_transitions_for_stage(self, app, db_session):
        result = _run(app, "workflow", "transitions", "--stage", "ordered")

        assert "--receive-->" in result.output
        assert "conditional" in result.output
