"""Dashboard router: the example resource behind the route guard."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from warden.database import get_db
from warden.dependencies.auth import get_current_user
from warden.models.user import User
from warden.services.second_factor import TrustedDeviceService
from warden.services.security_audit_service import SecurityAuditService
from warden.services.session_service import SessionIssuer

logger = logging.getLogger(__name__)

# Mounted without the /api prefix; RouteGuardMiddleware redirects
# unauthenticated browsers before this handler runs.
router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("")
def get_dashboard(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    """Account overview for the signed-in user."""
    return {
        "user": {
            "id": current_user.id,
            "email": current_user.email,
            "name": current_user.name,
        },
        "security": {
            "email_verified": current_user.email_verified,
            "two_factor_enabled": current_user.two_factor_enabled,
            "active_sessions": len(SessionIssuer(db).active_sessions(current_user.id)),
            "trusted_devices": len(TrustedDeviceService.list_for_user(db, current_user.id)),
        },
        "recent_activity": [
            {"event": e.event_type, "ip_address": e.ip_address, "at": e.created_at}
            for e in SecurityAuditService.recent_events(db, current_user.id, limit=5)
        ],
    }
