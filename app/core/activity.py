from __future__ import annotations

from app.core.extensions import db
from app.core.models import ActivityAction, ActivityLog
from app.core.tenancy import current_scope


def log_activity(
    entity_type: str,
    entity_id: int | None,
    action: ActivityAction,
    detalles: str = "",
    branch_id: int | None = None,
) -> ActivityLog:
    """Queue an activity row in the current session; the caller commits."""
    scope = current_scope()
    entry = ActivityLog(
        funeral_home_id=scope.funeral_home_id,
        branch_id=branch_id,
        user_id=scope.profile_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action.value,
        detalles=detalles[:1000],
    )
    db.session.add(entry)
    return entry
