"""One-time verification codes that gate the signature of a trámite.

A code belongs to a (trámite, usuario) pair and at most one of them is live
(``usado = false``) at a time. Every write to a code row is a compare-and-set
on its ``version`` column so two concurrent validation attempts cannot both
read the same ``intentos_fallidos`` and under-count failures. Lockout is
global per user: any code row with ``bloqueado_hasta`` in the future blocks
issuance and validation for every trámite.
"""
from __future__ import annotations

import hmac
import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func, update

from app.core.config import VerificationSettings
from app.core.errors import DependencyFailure, LockedOut, NotFound, PreconditionFailed, ValidationFailed
from app.core.extensions import db
from app.core.mailer import EmailSendError
from app.core.models import (
    CodigoVerificacionFirma,
    Documento,
    FirmaElectronica,
    Tramite,
    TramiteEstado,
    User,
    utcnow,
)
from app.core.utils import as_utc, censor_email

logger = logging.getLogger(__name__)

CODE_CAS_RETRIES = 3


@dataclass(frozen=True)
class CodigoValidado:
    """Proof that a code was validated for ``(tramite_id, user_id)`` in this transaction."""

    tramite_id: int
    user_id: int
    codigo_id: int


@dataclass(frozen=True)
class _SigningTarget:
    tramite_id: int
    codigo: str
    documento_titulo: str


def verification_settings(settings: VerificationSettings | None = None) -> VerificationSettings:
    if settings is not None:
        return settings
    return current_app.extensions["verification_settings"]


def code_mailer():
    return current_app.extensions["code_mailer"]


def active_lockout(user_id: int, now: datetime | None = None) -> datetime | None:
    now = now or utcnow()
    hasta = (
        db.session.query(func.max(CodigoVerificacionFirma.bloqueado_hasta))
        .filter(CodigoVerificacionFirma.id_usuario == user_id)
        .filter(CodigoVerificacionFirma.bloqueado_hasta > now)
        .scalar()
    )
    return as_utc(hasta)


def _raise_if_locked(user_id: int, now: datetime) -> None:
    hasta = active_lockout(user_id, now)
    if hasta is None:
        return
    minutos = max(1, math.ceil((hasta - now).total_seconds() / 60))
    raise LockedOut(
        f"Verificacion bloqueada por demasiados intentos fallidos. Intente nuevamente en {minutos} minutos",
        {"minutos_restantes": minutos, "bloqueado_hasta": hasta.isoformat()},
    )


def _signing_target(tramite_id: int, user_id: int) -> _SigningTarget:
    row = (
        db.session.query(
            Tramite.id,
            Tramite.codigo,
            Tramite.estado,
            Tramite.requiere_firma,
            Tramite.id_receptor,
            Documento.titulo,
        )
        .join(Documento, Documento.id == Tramite.id_documento)
        .filter(Tramite.id == tramite_id)
        .first()
    )
    if row is None:
        raise NotFound("Tramite no encontrado")
    if row.id_receptor != user_id:
        raise PreconditionFailed("Solo el receptor puede firmar este tramite")
    if not row.requiere_firma:
        raise PreconditionFailed("Este tramite no requiere firma electronica")
    if row.estado != TramiteEstado.LEIDO:
        raise PreconditionFailed("El documento debe estar leido antes de firmarlo")
    already_signed = (
        db.session.query(FirmaElectronica.id).filter(FirmaElectronica.id_tramite == tramite_id).first()
    )
    if already_signed:
        raise PreconditionFailed("El tramite ya fue firmado")
    return _SigningTarget(tramite_id=row.id, codigo=row.codigo, documento_titulo=row.titulo)


def _user_contact(user_id: int) -> tuple[str, str]:
    row = db.session.query(User.correo, User.nombres, User.apellidos).filter(User.id == user_id).first()
    if row is None:
        raise NotFound("Usuario no encontrado")
    return row.correo, f"{row.nombres} {row.apellidos}".strip()


def _generate_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def _compare_and_set(row: CodigoVerificacionFirma, **values) -> bool:
    result = db.session.execute(
        update(CodigoVerificacionFirma)
        .where(CodigoVerificacionFirma.id == row.id)
        .where(CodigoVerificacionFirma.version == row.version)
        .where(CodigoVerificacionFirma.usado.is_(False))
        .values(version=row.version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _live_code(tramite_id: int, user_id: int) -> CodigoVerificacionFirma | None:
    return (
        CodigoVerificacionFirma.query.filter_by(id_tramite=tramite_id, id_usuario=user_id, usado=False)
        .order_by(CodigoVerificacionFirma.fecha_creacion.desc(), CodigoVerificacionFirma.id.desc())
        .populate_existing()
        .first()
    )


def issue_code(
    tramite_id: int,
    actor_id: int,
    ip: str,
    user_agent: str,
    settings: VerificationSettings | None = None,
) -> dict[str, object]:
    cfg = verification_settings(settings)
    target = _signing_target(tramite_id, actor_id)
    now = utcnow()
    _raise_if_locked(actor_id, now)
    correo, nombre = _user_contact(actor_id)

    db.session.execute(
        update(CodigoVerificacionFirma)
        .where(CodigoVerificacionFirma.id_tramite == tramite_id)
        .where(CodigoVerificacionFirma.id_usuario == actor_id)
        .where(CodigoVerificacionFirma.usado.is_(False))
        .values(usado=True, fecha_usado=now, version=CodigoVerificacionFirma.version + 1)
        .execution_options(synchronize_session=False)
    )
    expira_en = now + timedelta(minutes=cfg.expiracion_minutos)
    codigo = _generate_code()
    row = CodigoVerificacionFirma(
        id_tramite=tramite_id,
        id_usuario=actor_id,
        codigo=codigo,
        email_destinatario=correo,
        expira_en=expira_en,
        ip_solicitud=(ip or "")[:64],
        user_agent=(user_agent or "")[:500],
        fecha_creacion=now,
    )
    db.session.add(row)
    db.session.flush()

    try:
        code_mailer().send_code(
            correo,
            nombre,
            codigo,
            target.documento_titulo,
            target.codigo,
            cfg.expiracion_minutos,
        )
    except EmailSendError as exc:
        db.session.rollback()
        logger.error("No se pudo enviar el codigo del tramite %s al usuario %s: %s", target.codigo, actor_id, exc)
        raise DependencyFailure("No se pudo enviar el codigo de verificacion. Intente nuevamente") from exc

    db.session.commit()
    logger.info("Codigo de verificacion emitido para tramite %s, usuario %s", target.codigo, actor_id)
    return {
        "mensaje": "Codigo de verificacion enviado",
        "expira_en": expira_en.isoformat(),
        "minutos_expiracion": cfg.expiracion_minutos,
        "email_enviado_a": censor_email(correo),
    }


def _send_lockout_notice(user_id: int, minutos: int) -> None:
    correo, nombre = _user_contact(user_id)
    try:
        code_mailer().send_lockout_notice(correo, nombre, minutos)
    except EmailSendError:
        logger.exception("No se pudo enviar el aviso de bloqueo al usuario %s", user_id)


def validate_code(
    tramite_id: int,
    actor_id: int,
    codigo: str,
    ip: str,
    settings: VerificationSettings | None = None,
) -> CodigoValidado:
    """Check ``codigo`` against the live code of the pair.

    Failed attempts are committed before raising. On success the row is marked
    used inside the open transaction and the caller commits it together with
    the signature.
    """
    cfg = verification_settings(settings)
    entered = (codigo or "").strip()
    now = utcnow()
    _raise_if_locked(actor_id, now)
    if len(entered) != 6 or not (entered.isascii() and entered.isdecimal()):
        raise ValidationFailed("El codigo debe tener 6 digitos")

    for _attempt in range(CODE_CAS_RETRIES):
        row = _live_code(tramite_id, actor_id)
        if row is None:
            raise ValidationFailed("No hay un codigo de verificacion activo. Solicite uno nuevo")

        if as_utc(row.expira_en) <= now:
            if not _compare_and_set(row, usado=True, fecha_usado=now):
                continue
            db.session.commit()
            raise ValidationFailed("El codigo de verificacion ha expirado. Solicite uno nuevo")

        if not hmac.compare_digest(row.codigo, entered):
            intentos = row.intentos_fallidos + 1
            if intentos >= cfg.max_intentos:
                hasta = now + timedelta(minutes=cfg.bloqueo_minutos)
                if not _compare_and_set(
                    row,
                    intentos_fallidos=intentos,
                    usado=True,
                    fecha_usado=now,
                    bloqueado_hasta=hasta,
                ):
                    continue
                db.session.commit()
                logger.warning(
                    "Usuario %s bloqueado %s minutos tras %s intentos fallidos (ip %s)",
                    actor_id,
                    cfg.bloqueo_minutos,
                    intentos,
                    ip,
                )
                _send_lockout_notice(actor_id, cfg.bloqueo_minutos)
                raise LockedOut(
                    f"Demasiados intentos fallidos. Verificacion bloqueada durante {cfg.bloqueo_minutos} minutos",
                    {"minutos_restantes": cfg.bloqueo_minutos, "bloqueado_hasta": hasta.isoformat()},
                )
            if not _compare_and_set(row, intentos_fallidos=intentos):
                continue
            db.session.commit()
            restantes = cfg.max_intentos - intentos
            raise ValidationFailed(
                f"Codigo incorrecto. Le quedan {restantes} intentos",
                {"intentos_restantes": restantes},
            )

        if not _compare_and_set(row, usado=True, fecha_usado=now):
            continue
        return CodigoValidado(tramite_id=tramite_id, user_id=actor_id, codigo_id=row.id)

    raise PreconditionFailed("El codigo fue modificado por otra solicitud. Intente nuevamente")


def verification_statistics() -> dict[str, object]:
    now = utcnow()
    total = db.session.query(func.count(CodigoVerificacionFirma.id)).scalar() or 0
    usados = (
        db.session.query(func.count(CodigoVerificacionFirma.id))
        .filter(CodigoVerificacionFirma.usado.is_(True))
        .scalar()
        or 0
    )
    expirados = (
        db.session.query(func.count(CodigoVerificacionFirma.id))
        .filter(CodigoVerificacionFirma.usado.is_(False))
        .filter(CodigoVerificacionFirma.expira_en <= now)
        .scalar()
        or 0
    )
    bloqueados = (
        db.session.query(func.count(func.distinct(CodigoVerificacionFirma.id_usuario)))
        .filter(CodigoVerificacionFirma.bloqueado_hasta > now)
        .scalar()
        or 0
    )
    firmas = db.session.query(func.count(FirmaElectronica.id)).scalar() or 0
    return {
        "total_codigos": total,
        "codigos_usados": usados,
        "codigos_expirados": expirados,
        "usuarios_bloqueados": bloqueados,
        "firmas_exitosas": firmas,
        "tasa_exito": round(firmas * 100 / total, 2) if total else 0.0,
    }
