from __future__ import annotations

from flask import abort, g
from flask_login import current_user

from app.core.permissions import Caller


def load_caller_context() -> None:
    g.caller = None
    if not current_user.is_authenticated:
        return
    if not current_user.is_active:
        abort(403)
    g.caller = Caller(user_id=current_user.id, role=current_user.role)
