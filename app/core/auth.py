from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from werkzeug.security import check_password_hash

from app.core.errors import ValidationFailed
from app.core.models import User
from app.core.permissions import user_capabilities

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _user_payload(user: User) -> dict[str, object]:
    _activo, roles = user_capabilities(user.id)
    return {
        "id": user.id,
        "correo": user.correo,
        "nombre": user.full_name,
        "id_area": user.id_area,
        "roles": sorted(roles),
    }


@auth_bp.post("/login")
def login_post():
    data = request.get_json(silent=True) or request.form
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    user = User.query.filter_by(correo=email).first()
    if not user or not check_password_hash(user.password_hash, password):
        raise ValidationFailed("Credenciales invalidas")
    if not user.activo:
        raise ValidationFailed("Usuario inactivo")
    login_user(user)
    return jsonify(_user_payload(user))


@auth_bp.post("/logout")
@login_required
def logout():
    logout_user()
    return jsonify({"mensaje": "Sesion cerrada"})


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(_user_payload(current_user))
