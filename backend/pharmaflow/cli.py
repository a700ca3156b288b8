# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/pharmaflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: flask --app wsgi <group> <command> [options]
#
# System bootstrap/repair:
# - flask system init [--demo-users]
#   Idempotent bootstrap: tables, permission catalog, roles, default workflow,
#   admin user (and one user per role with matching stage grants).
# - flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - flask users create --username qa1 --email qa1@pharmaflow.local --role quality_assurance
# - flask users list
# - flask users issue-token admin [--hours 8]
#   Print a bearer token for API calls.
# - flask users grant-role qa1 viewer
#
# Permission catalog:
# - flask perms list [--category WORKFLOW] [--role procurement]
#
# Workflow registry:
# - flask workflow seed
# - flask workflow stages [--active-only]
# - flask workflow transitions [--stage DRAFT]
# - flask workflow export --format mermaid
#
# Stage grants:
# - flask grants assign qa1 QC_REVIEW --perm qc_view --perm qc_approve [--expires 2026-12-31T00:00:00Z]
# - flask grants revoke qa1 QC_REVIEW [--perm qc_approve]
# - flask grants list [--stage QC_REVIEW] [--username qa1]
# - flask grants deactivate-expired
#
# Maintenance:
# - flask maintenance cleanup-security-events --retention-days 90
# - flask maintenance cleanup-sessions --retention-days 30
# - flask maintenance purge-inactive-grants --retention-days 365

import json
from datetime import timedelta

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Permission, Role, RolePermission, StagePermission, User, WorkflowStage
from .permissions import DEFAULT_ROLE_PERMISSIONS
from .services import (
    maintenance_service,
    permission_service,
    session_service,
    stage_permission_service,
    transition_service,
    user_service,
)
from .services.workflow_engine import get_engine
from .validation import DomainError
from .workflow_seed import seed_default_workflow

DEMO_USERS = [
    ("procurement", "procurement@pharmaflow.local", "Procurement Officer", "procurement"),
    ("qa_inspector", "qa_inspector@pharmaflow.local", "QA Inspector", "quality_assurance"),
    ("warehouse", "warehouse@pharmaflow.local", "Warehouse Manager", "warehouse"),
    ("viewer", "viewer@pharmaflow.local", "Read Only", "viewer"),
]


def _fail(message: str) -> None:
    click.echo(f"FAIL {message}")


def _user_or_fail(username: str) -> User | None:
    user = user_service.get_user_by_username(username)
    if user is None:
        _fail(f"User '{username}' not found")
    return user


def _stage_or_fail(code: str) -> WorkflowStage | None:
    stage = db.session.query(WorkflowStage).filter_by(code=code.upper()).first()
    if stage is None:
        _fail(f"Stage '{code}' not found")
    return stage


def grant_role_stage_permissions(user: User, role_name: str, *, assigned_by: User) -> int:
    """
    Grant user, on every stage, the stage's required permissions that the
    role also carries. Returns the number of grants written.
    """
    role_permissions = set(DEFAULT_ROLE_PERMISSIONS.get(role_name, []))
    granted = 0
    for stage in db.session.query(WorkflowStage).order_by(WorkflowStage.sequence).all():
        matching = [p.id for p in stage.required_permissions if p.name in role_permissions]
        if not matching:
            continue
        stage_permission_service.assign(
            {"user_id": user.id, "stage_id": stage.id, "permissions": matching,
             "remarks": f"Default grant for role {role_name}"},
            assigned_by=assigned_by,
        )
        granted += 1
    return granted


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--demo-users', is_flag=True, help='Also create one user per role with stage grants')
@with_appcontext
def init_system(demo_users):
    """
    Initialize PharmaFlow: schema, permission catalog, roles, default
    workflow and the admin user. Safe to run repeatedly.
    """
    click.echo("START Initializing PharmaFlow...")
    db.create_all()

    perm_count = permission_service.initialize_permissions()
    role_count = permission_service.create_default_roles()
    assignment_count = permission_service.assign_default_role_permissions()
    click.echo(f"PASS {perm_count} permissions, {role_count} roles, {assignment_count} role assignments created")

    admin = user_service.get_user_by_username("admin")
    if admin is None:
        admin = user_service.create_user("admin", "admin@pharmaflow.local", "Administrator")
        click.echo("PASS Created user: admin")
    user_service.assign_role(admin.id, "admin")

    seeded = seed_default_workflow(created_by_user_id=admin.id)
    click.echo(f"PASS Workflow: {seeded['stages']} stages, {seeded['transitions']} transitions created")

    admin_grants = grant_role_stage_permissions(admin, "admin", assigned_by=admin)
    click.echo(f"PASS Admin holds grants on {admin_grants} stages")

    if demo_users:
        for username, email, full_name, role_name in DEMO_USERS:
            user = user_service.get_user_by_username(username)
            if user is None:
                user = user_service.create_user(username, email, full_name)
            user_service.assign_role(user.id, role_name)
            count = grant_role_stage_permissions(user, role_name, assigned_by=admin)
            click.echo(f"PASS {username:<12} role={role_name:<18} stage grants={count}")

    click.echo("DONE PharmaFlow initialized. Issue a token with: flask users issue-token admin")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'flask system init' to initialize.")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User directory commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--full-name', default=None, help='Display name')
@click.option('--role', type=click.Choice(sorted(DEFAULT_ROLE_PERMISSIONS)), default=None, help='Role')
@click.option('--with-stage-grants', is_flag=True, help="Grant the role's permissions on matching stages")
@with_appcontext
def create_user_cli(username, email, full_name, role, with_stage_grants):
    """Create a user, optionally with a role and the matching stage grants."""
    try:
        user = user_service.create_user(username, email, full_name)
        if role:
            user_service.assign_role(user.id, role)
        click.echo(f"PASS Created user: {user.username} (ID: {user.id})")
        if role and with_stage_grants:
            admin = user_service.get_user_by_username("admin") or user
            count = grant_role_stage_permissions(user, role, assigned_by=admin)
            click.echo(f"PASS Granted {count} stage permissions")
    except DomainError as e:
        _fail(e.message)


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = user_service.list_users()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<32} {'Active':<8} {'Roles'}")
    click.echo("=" * 90)
    for user in users:
        roles = permission_service.get_user_role_names(user.id)
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<32} {active_str:<8} {', '.join(roles) or 'none'}")
    click.echo("=" * 90 + "\n")


@users_group.command('issue-token')
@click.argument('username')
@click.option('--hours', type=int, default=None, help='Token lifetime (default: session maximum)')
@with_appcontext
def issue_token(username, hours):
    """Print a bearer token for USERNAME."""
    user = _user_or_fail(username)
    if user is None:
        return
    lifetime = timedelta(hours=hours) if hours else None
    try:
        session, token = session_service.create_session(user.id, lifetime=lifetime)
    except DomainError as e:
        _fail(e.message)
        return
    click.echo(f"Token for {user.username} (expires {session.expires_at.isoformat()}Z):")
    click.echo(token)


@users_group.command('grant-role')
@click.argument('username')
@click.argument('role_name')
@with_appcontext
def grant_role(username, role_name):
    user = _user_or_fail(username)
    if user is None:
        return
    try:
        user_service.assign_role(user.id, role_name)
    except DomainError as e:
        _fail(e.message)
        return
    click.echo(f"PASS {username} now has role '{role_name}'")


# =============================================================================
# PERMISSIONS
# =============================================================================

@click.group('perms')
def perms_group():
    """Permission catalog inspection."""


@perms_group.command('list')
@click.option('--role', help='Filter by role name')
@click.option('--category', help='Filter by category')
@with_appcontext
def list_permissions_cli(role, category):
    """List permissions, optionally filtered by role or category."""
    query = db.session.query(Permission)
    if role:
        role_obj = db.session.query(Role).filter_by(name=role).first()
        if not role_obj:
            _fail(f"Role '{role}' not found")
            return
        query = query.join(RolePermission, RolePermission.permission_id == Permission.id).filter(
            RolePermission.role_id == role_obj.id
        )
    if category:
        query = query.filter(Permission.category == category.upper())
    perms = query.order_by(Permission.category, Permission.name).all()

    current_category = None
    for perm in perms:
        if perm.category != current_category:
            click.echo(f"\nCATEGORY {perm.category}")
            click.echo("-" * 80)
            current_category = perm.category
        click.echo(f"  {perm.name:<30} {perm.resource}:{perm.action:<18} {perm.description or ''}")

    click.echo(f"\n Total: {len(perms)} permissions\n")


# =============================================================================
# WORKFLOW
# =============================================================================

@click.group('workflow')
def workflow_group():
    """Workflow registry commands."""


@workflow_group.command('seed')
@with_appcontext
def seed_workflow():
    """Create missing default stages and transition rules."""
    admin = user_service.get_user_by_username("admin")
    seeded = seed_default_workflow(created_by_user_id=admin.id if admin else None)
    click.echo(f"PASS {seeded['stages']} stages, {seeded['transitions']} transitions created")


@workflow_group.command('stages')
@click.option('--active-only', is_flag=True)
@with_appcontext
def list_stages(active_only):
    query = db.session.query(WorkflowStage)
    if active_only:
        query = query.filter(WorkflowStage.is_active.is_(True))
    stages = query.order_by(WorkflowStage.sequence, WorkflowStage.id).all()

    click.echo(f"{'Seq':<5} {'Code':<20} {'Active':<7} {'Actions':<30} {'Required permissions'}")
    click.echo("-" * 100)
    for stage in stages:
        required = ", ".join(p.name for p in stage.required_permissions) or "-"
        active = "Yes" if stage.is_active else "No"
        click.echo(f"{stage.sequence:<5} {stage.code:<20} {active:<7} "
                   f"{','.join(stage.allowed_actions or []):<30} {required}")
    click.echo(f"\n Total: {len(stages)} stages\n")


@workflow_group.command('transitions')
@click.option('--stage', 'stage_code', help='Only rules leaving this stage')
@with_appcontext
def list_transitions(stage_code):
    from_stage_id = None
    if stage_code:
        stage = _stage_or_fail(stage_code)
        if stage is None:
            return
        from_stage_id = stage.id

    for rule in transition_service.list_transitions(from_stage_id=from_stage_id):
        flags = []
        if rule.auto_transition:
            flags.append("auto")
        if rule.conditions:
            flags.append("conditional")
        if rule.required_fields:
            flags.append("requires " + ",".join(rule.required_fields))
        click.echo(f"{rule.id:<5} {rule.from_stage.code:<18} --{rule.action}--> "
                   f"{rule.to_stage.code:<18} {' '.join(flags)}")


@workflow_group.command('export')
@click.option('--format', 'fmt', type=click.Choice(['json', 'mermaid', 'graphviz']), default='mermaid',
              show_default=True)
@with_appcontext
def export_workflow(fmt):
    """Print the active workflow graph."""
    graph = get_engine().get_workflow_visualization(fmt)
    if fmt == "json":
        click.echo(json.dumps(graph, indent=2))
    else:
        click.echo(graph["content"])


# =============================================================================
# STAGE GRANTS
# =============================================================================

@click.group('grants')
def grants_group():
    """Stage permission grants."""


@grants_group.command('assign')
@click.argument('username')
@click.argument('stage_code')
@click.option('--perm', 'perm_names', multiple=True, help='Permission name (repeatable)')
@click.option('--expires', default=None, help='ISO-8601 expiry (omit for no expiry)')
@click.option('--remarks', default=None)
@click.option('--by', 'by_username', default='admin', show_default=True, help='Assigning user')
@with_appcontext
def assign_grant(username, stage_code, perm_names, expires, remarks, by_username):
    user = _user_or_fail(username)
    assigner = _user_or_fail(by_username)
    stage = _stage_or_fail(stage_code)
    if user is None or assigner is None or stage is None:
        return
    try:
        permissions = permission_service.get_permissions_by_names(perm_names)
        assignment = stage_permission_service.assign(
            {
                "user_id": user.id,
                "stage_id": stage.id,
                "permissions": [p.id for p in permissions],
                "expiry_date": expires,
                "remarks": remarks,
            },
            assigned_by=assigner,
        )
    except DomainError as e:
        _fail(e.message)
        return
    click.echo(f"PASS {username}@{stage.code}: {', '.join(sorted(assignment.permission_names)) or '(none)'}")


@grants_group.command('revoke')
@click.argument('username')
@click.argument('stage_code')
@click.option('--perm', 'perm_names', multiple=True, help='Only revoke these permissions')
@click.option('--by', 'by_username', default='admin', show_default=True)
@with_appcontext
def revoke_grant(username, stage_code, perm_names, by_username):
    user = _user_or_fail(username)
    revoker = _user_or_fail(by_username)
    stage = _stage_or_fail(stage_code)
    if user is None or revoker is None or stage is None:
        return
    try:
        permission_ids = [p.id for p in permission_service.get_permissions_by_names(perm_names)] or None
        assignment = stage_permission_service.revoke(user.id, stage.id, permission_ids, revoked_by=revoker)
    except DomainError as e:
        _fail(e.message)
        return
    if assignment is None:
        _fail(f"{username} has no grant on {stage.code}")
        return
    state = "active" if assignment.is_active else "inactive"
    click.echo(f"PASS {username}@{stage.code} is {state}: {', '.join(sorted(assignment.permission_names)) or '(none)'}")


@grants_group.command('list')
@click.option('--stage', 'stage_code', default=None)
@click.option('--username', default=None)
@click.option('--include-inactive', is_flag=True)
@with_appcontext
def list_grants(stage_code, username, include_inactive):
    query = db.session.query(StagePermission)
    if stage_code:
        stage = _stage_or_fail(stage_code)
        if stage is None:
            return
        query = query.filter(StagePermission.stage_id == stage.id)
    if username:
        user = _user_or_fail(username)
        if user is None:
            return
        query = query.filter(StagePermission.user_id == user.id)
    if not include_inactive:
        query = query.filter(StagePermission.is_active.is_(True))

    grants = query.order_by(StagePermission.stage_id, StagePermission.user_id).all()
    for grant in grants:
        if grant.is_valid:
            state = "valid"
        elif grant.is_active:
            state = "expired"
        else:
            state = "inactive"
        expiry = grant.expiry_date.isoformat() if grant.expiry_date else "never"
        click.echo(f"{grant.user.username:<15} {grant.stage.code:<18} {state:<9} expires={expiry:<20} "
                   f"{', '.join(sorted(grant.permission_names)) or '(none)'}")
    click.echo(f"\n Total: {len(grants)} grants\n")


@grants_group.command('deactivate-expired')
@with_appcontext
def deactivate_expired():
    count = maintenance_service.deactivate_expired_grants()
    click.echo(f"Deactivated {count} expired stage grants.")


# =============================================================================
# MAINTENANCE
# =============================================================================

@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-security-events')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_security_events_cli(retention_days):
    """Delete security events older than the retention window."""
    deleted = maintenance_service.cleanup_security_events(retention_days=retention_days)
    click.echo(f"Deleted {deleted} security events older than {retention_days} days.")


@maintenance_group.command('cleanup-sessions')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(retention_days):
    deleted = maintenance_service.cleanup_expired_sessions(retention_days=retention_days)
    click.echo(f"Deleted {deleted} expired or revoked sessions.")


@maintenance_group.command('purge-inactive-grants')
@click.option('--retention-days', type=int, default=365, show_default=True)
@with_appcontext
def purge_inactive_grants_cli(retention_days):
    deleted = maintenance_service.purge_inactive_grants(retention_days=retention_days)
    click.echo(f"Deleted {deleted} inactive stage grants older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(workflow_group)
    app.cli.add_command(grants_group)
    app.cli.add_command(maintenance_group)
