# Overview: Retention and housekeeping tasks run from the CLI.

from __future__ import annotations

from datetime import timedelta

from ..extensions import db
from ..models import SecurityEvent, StagePermission
from . import session_service, stage_permission_service
from pharmaflow.time_utils import utcnow


def cleanup_security_events(*, retention_days: int = 90) -> int:
    """Delete security events older than retention_days."""
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(SecurityEvent).filter(
        SecurityEvent.occurred_at < cutoff
    ).delete()
    db.session.commit()
    return deleted


def deactivate_expired_grants() -> int:
    return stage_permission_service.deactivate_expired()


def purge_inactive_grants(*, retention_days: int = 365) -> int:
    """
    Delete inactive stage grants untouched for retention_days.

    The permission_changed audit rows written on revoke keep the trail.
    """
    cutoff = utcnow() - timedelta(days=retention_days)
    stale = db.session.query(StagePermission).filter(
        StagePermission.is_active.is_(False),
        StagePermission.updated_at < cutoff,
    ).all()
    for assignment in stale:
        assignment.permissions = []
        db.session.delete(assignment)
    db.session.commit()
    return len(stale)


def cleanup_expired_sessions(*, retention_days: int = 30) -> int:
    return session_service.cleanup_expired_sessions(retention_days=retention_days)
