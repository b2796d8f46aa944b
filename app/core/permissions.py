from __future__ import annotations

from dataclasses import dataclass
from functools import wraps

from flask import abort, g
from flask_login import current_user

from app.core.errors import Forbidden
from app.core.models import UserRole


@dataclass(frozen=True)
class Caller:
    user_id: int
    role: UserRole

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES


PRIVILEGED_ROLES = frozenset({UserRole.SUPER_ADMIN, UserRole.ADMIN, UserRole.STAFF})
ADMIN_ROLES = frozenset({UserRole.SUPER_ADMIN, UserRole.ADMIN})
ALL_ROLES = frozenset(UserRole)

# One capability per facade operation.
CAPABILITIES: dict[str, frozenset[UserRole]] = {
    "plot.view": ALL_ROLES,
    "plot.maintenance": ADMIN_ROLES,
    "reservation.create": ALL_ROLES,
    "reservation.create_for_holder": PRIVILEGED_ROLES,
    "reservation.view_all": PRIVILEGED_ROLES,
    "reservation.upload_payment": ALL_ROLES,
    "reservation.validate_payment": ADMIN_ROLES,
    "reservation.approve_payment": ADMIN_ROLES,
    "reservation.reject_payment": ADMIN_ROLES,
    "reservation.approve": ADMIN_ROLES,
    "reservation.reject": ADMIN_ROLES,
    "reservation.cancel": ALL_ROLES,
    "burial_request.submit": ALL_ROLES,
    "burial_request.cancel": ALL_ROLES,
    "burial_request.reject": PRIVILEGED_ROLES,
    "burial_request.complete": PRIVILEGED_ROLES,
    "burial_request.view_all": PRIVILEGED_ROLES,
    "burial.confirm": PRIVILEGED_ROLES,
    "burial.create": PRIVILEGED_ROLES,
    "burial.edit": ADMIN_ROLES,
    "burial.delete": ADMIN_ROLES,
    "burial.view_all": PRIVILEGED_ROLES,
    "burial_schedule.create": PRIVILEGED_ROLES,
    "burial_schedule.edit": PRIVILEGED_ROLES,
    "burial_schedule.delete": PRIVILEGED_ROLES,
    "burial_schedule.view": PRIVILEGED_ROLES,
    "maintenance_request.create": ALL_ROLES,
    "maintenance_request.cancel": ALL_ROLES,
    "maintenance_request.review": PRIVILEGED_ROLES,
    "maintenance_request.view_all": PRIVILEGED_ROLES,
}


def has_capability(caller: Caller, capability: str) -> bool:
    roles = CAPABILITIES.get(capability)
    if roles is None:
        raise KeyError(f"Unknown capability {capability}")
    return caller.role in roles


def require_capability(caller: Caller | None, capability: str) -> Caller:
    if caller is None or not has_capability(caller, capability):
        raise Forbidden("You are not allowed to perform this action")
    return caller


def require_caller(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            abort(401)
        if getattr(g, "caller", None) is None:
            abort(403)
        return fn(*args, **kwargs)

    return wrapper
