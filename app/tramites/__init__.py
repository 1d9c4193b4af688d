from __future__ import annotations

from flask import Blueprint

tramites_bp = Blueprint("tramites", __name__, url_prefix="/api")

from app.tramites import routes  # noqa: E402,F401
