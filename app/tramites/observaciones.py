from __future__ import annotations

import logging

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import NotFound, PreconditionFailed, TramiteError, ValidationFailed
from app.core.extensions import db
from app.core.models import (
    HistorialAccion,
    NotificacionTipo,
    Observacion,
    ObservacionTipo,
    Tramite,
    utcnow,
)
from app.core.notifications import notify
from app.core.permissions import ROL_ADMIN, has_capability
from app.tramites.services import (
    ACTIVE_STATES,
    _log_historial,
    _parse_bool,
    _parse_id,
    document_flags,
    fork_tramite,
    notify_resubmission,
    tramite_by_id,
    visible_tramite,
)

logger = logging.getLogger(__name__)


def _parse_tipo(value: object) -> ObservacionTipo:
    raw = str(value or "").strip().upper()
    try:
        return ObservacionTipo[raw]
    except KeyError as exc:
        raise ValidationFailed("Tipo de observacion invalido") from exc


def create_observacion(tramite_id: int, payload: dict[str, object], actor_id: int) -> Observacion:
    tramite = tramite_by_id(tramite_id)
    if tramite.id_receptor != actor_id:
        raise PreconditionFailed("Solo el receptor puede registrar observaciones")
    if tramite.estado not in ACTIVE_STATES:
        raise PreconditionFailed(
            f"No se pueden registrar observaciones en estado {tramite.estado.value}",
            {"estado_actual": tramite.estado.value},
        )
    tipo = _parse_tipo(payload.get("tipo"))
    descripcion = str(payload.get("descripcion") or "").strip()
    if not descripcion:
        raise ValidationFailed("La descripcion de la observacion es obligatoria")

    observacion = Observacion(
        id_tramite=tramite.id,
        creado_por=actor_id,
        tipo=tipo,
        descripcion=descripcion,
        fecha_creacion=utcnow(),
    )
    db.session.add(observacion)
    db.session.flush()
    _log_historial(
        tramite.id,
        HistorialAccion.OBSERVACION,
        f"Observacion registrada ({tipo.value})",
        actor_id,
        estado_anterior=tramite.estado,
        estado_nuevo=tramite.estado,
        datos_adicionales={"id_observacion": observacion.id, "tipo": tipo.value},
    )
    db.session.commit()

    logger.info("Observacion %s registrada en tramite %s", observacion.id, tramite.codigo)
    notify(
        tramite.id_remitente,
        NotificacionTipo.OBSERVACION_CREADA,
        tramite.id,
        f"Nueva observacion en {tramite.codigo}",
        descripcion,
        {"id_observacion": observacion.id, "tipo": tipo.value},
    )
    return observacion


def resolve_observacion(
    observacion_id: int,
    payload: dict[str, object],
    actor_id: int,
) -> dict[str, object]:
    """Resolve an observation and, when asked, resubmit a corrected document.

    Everything (observation update, history entries and the new version) is
    written in one transaction.
    """
    observacion = db.session.get(Observacion, observacion_id)
    if observacion is None:
        raise NotFound("Observacion no encontrada")
    tramite = observacion.tramite
    if tramite.id_remitente != actor_id:
        raise PreconditionFailed("Solo el remitente puede responder la observacion")
    if observacion.resuelta:
        raise PreconditionFailed("La observacion ya fue resuelta")
    respuesta = str(payload.get("respuesta") or "").strip()
    if not respuesta:
        raise ValidationFailed("La respuesta es obligatoria")

    incluye_reenvio = bool(_parse_bool(payload.get("incluye_reenvio")))
    documento_id: int | None = None
    if incluye_reenvio:
        if payload.get("id_documento_corregido") in (None, ""):
            raise ValidationFailed("Debe indicar el documento corregido para el reenvio")
        documento_id = _parse_id(payload.get("id_documento_corregido"), "Documento corregido")
        document_flags(documento_id)

    estado = tramite.estado
    nuevo: Tramite | None = None
    try:
        observacion.resuelta = True
        observacion.respuesta = respuesta
        observacion.resuelto_por = actor_id
        observacion.fecha_resolucion = utcnow()
        _log_historial(
            tramite.id,
            HistorialAccion.OBSERVACION_RESUELTA,
            f"Observacion resuelta: {respuesta}",
            actor_id,
            estado_anterior=estado,
            estado_nuevo=estado,
            datos_adicionales={"id_observacion": observacion.id, "incluye_reenvio": incluye_reenvio},
        )
        if incluye_reenvio:
            nuevo = fork_tramite(
                tramite.id,
                {
                    "id_documento": documento_id,
                    "motivo_reenvio": respuesta,
                    "asunto": payload.get("asunto_reenvio") or tramite.asunto,
                    "mensaje": payload.get("mensaje_reenvio"),
                },
                actor_id,
                commit=False,
            )
            observacion.id_tramite_reenvio = nuevo.id
            _log_historial(
                nuevo.id,
                HistorialAccion.REENVIO_POR_OBSERVACION,
                f"Reenvio generado por la observacion {observacion.id} del tramite {tramite.codigo}",
                actor_id,
                estado_nuevo=nuevo.estado,
                datos_adicionales={"id_observacion": observacion.id, "tramite_origen": tramite.id},
            )
        db.session.commit()
    except (TramiteError, SQLAlchemyError):
        db.session.rollback()
        raise

    logger.info(
        "Observacion %s resuelta por usuario %s%s",
        observacion.id,
        actor_id,
        f" con reenvio {nuevo.codigo}" if nuevo else "",
    )
    notify(
        tramite.id_receptor,
        NotificacionTipo.OBSERVACION_RESUELTA,
        tramite.id,
        f"Observacion resuelta en {tramite.codigo}",
        respuesta,
        {"id_observacion": observacion.id},
    )
    if nuevo is not None:
        notify_resubmission(nuevo)
    return {"observacion": observacion, "tramite_reenvio": nuevo}


def observaciones_for_tramite(tramite_id: int, actor_id: int) -> list[Observacion]:
    tramite = visible_tramite(tramite_id, actor_id)
    return (
        Observacion.query.filter_by(id_tramite=tramite.id)
        .order_by(Observacion.fecha_creacion.desc(), Observacion.id.desc())
        .all()
    )


def observacion_by_id(observacion_id: int, actor_id: int) -> Observacion:
    observacion = db.session.get(Observacion, observacion_id)
    if observacion is None:
        raise NotFound("Observacion no encontrada")
    visible_tramite(observacion.id_tramite, actor_id)
    return observacion


def _observaciones_scope(actor_id: int):
    query = Observacion.query.join(Tramite, Tramite.id == Observacion.id_tramite)
    if has_capability(actor_id, ROL_ADMIN):
        return query
    return query.filter(or_(Tramite.id_remitente == actor_id, Tramite.id_receptor == actor_id))


def pending_observaciones(actor_id: int) -> list[Observacion]:
    query = Observacion.query.join(Tramite, Tramite.id == Observacion.id_tramite)
    if not has_capability(actor_id, ROL_ADMIN):
        query = query.filter(Tramite.id_remitente == actor_id)
    return (
        query.filter(Observacion.resuelta.is_(False))
        .order_by(Observacion.fecha_creacion.asc(), Observacion.id.asc())
        .all()
    )


def observacion_statistics(actor_id: int) -> dict[str, object]:
    scoped = _observaciones_scope(actor_id)
    total = scoped.count()
    pendientes = scoped.filter(Observacion.resuelta.is_(False)).count()
    con_reenvio = scoped.filter(Observacion.id_tramite_reenvio.isnot(None)).count()
    por_tipo = {tipo.value: 0 for tipo in ObservacionTipo}
    for tipo, count in (
        scoped.with_entities(Observacion.tipo, func.count(Observacion.id)).group_by(Observacion.tipo).all()
    ):
        por_tipo[tipo.value] = count
    return {
        "total": total,
        "pendientes": pendientes,
        "resueltas": total - pendientes,
        "con_reenvio": con_reenvio,
        "por_tipo": por_tipo,
    }
