from __future__ import annotations

from app.core.errors import NotFound, PreconditionFailed
from app.core.extensions import db
from app.core.models import ROL_ADMIN, ROL_RESPONSABLE, ROL_TRABAJADOR, Rol, User, UsuarioRol

__all__ = [
    "ROL_ADMIN",
    "ROL_RESPONSABLE",
    "ROL_TRABAJADOR",
    "has_capability",
    "require_capability",
    "user_capabilities",
]


def user_capabilities(user_id: int) -> tuple[bool, set[str]]:
    """Return ``(activo, role codes)`` for a user without loading the graph."""
    activo = db.session.query(User.activo).filter(User.id == user_id).scalar()
    if activo is None:
        raise NotFound("Usuario no encontrado")
    codes = {
        row[0]
        for row in db.session.query(Rol.codigo)
        .join(UsuarioRol, UsuarioRol.id_rol == Rol.id)
        .filter(UsuarioRol.id_usuario == user_id)
        .all()
    }
    return bool(activo), codes


def has_capability(user_id: int, *roles: str) -> bool:
    activo, codes = user_capabilities(user_id)
    return activo and bool(codes.intersection(roles))


def require_capability(user_id: int, *roles: str, message: str | None = None) -> set[str]:
    activo, codes = user_capabilities(user_id)
    if not activo:
        raise PreconditionFailed("Usuario inactivo")
    if not codes.intersection(roles):
        raise PreconditionFailed(message or "No tiene permisos para esta operacion")
    return codes
