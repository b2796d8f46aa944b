from flask import Blueprint

cemetery_bp = Blueprint("cemetery", __name__, url_prefix="/api")

from app.cemetery import routes  # noqa: E402,F401
