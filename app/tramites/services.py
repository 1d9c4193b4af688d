from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy import func, or_, update
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import NotFound, PreconditionFailed, TramiteError, ValidationFailed
from app.core.extensions import db
from app.core.models import (
    Area,
    Documento,
    FirmaElectronica,
    HistorialAccion,
    HistorialTramite,
    NotificacionTipo,
    Observacion,
    RespuestaTramite,
    TipoDocumento,
    Tramite,
    TramiteEstado,
    User,
    utcnow,
)
from app.core.notifications import notify
from app.core.permissions import (
    ROL_ADMIN,
    ROL_RESPONSABLE,
    ROL_TRABAJADOR,
    has_capability,
    require_capability,
    user_capabilities,
)
from app.core.utils import extract_browser, extract_device
from app.tramites.verificacion import CodigoValidado, validate_code

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentFlags:
    documento_id: int
    titulo: str
    requiere_firma: bool
    requiere_respuesta: bool


TRAMITE_TRANSITIONS: dict[TramiteEstado, set[TramiteEstado]] = {
    TramiteEstado.ENVIADO: {TramiteEstado.ABIERTO, TramiteEstado.ANULADO},
    TramiteEstado.ABIERTO: {TramiteEstado.LEIDO, TramiteEstado.ANULADO},
    TramiteEstado.LEIDO: {
        TramiteEstado.FIRMADO,
        TramiteEstado.RESPONDIDO,
        TramiteEstado.ANULADO,
    },
    TramiteEstado.FIRMADO: set(),
    TramiteEstado.RESPONDIDO: set(),
    TramiteEstado.ANULADO: set(),
}

ACTIVE_STATES = (TramiteEstado.ENVIADO, TramiteEstado.ABIERTO, TramiteEstado.LEIDO)

TRAMITE_ORDER_FIELDS = {
    "fecha_envio": Tramite.fecha_envio,
    "fecha_leido": Tramite.fecha_leido,
    "fecha_firmado": Tramite.fecha_firmado,
    "asunto": Tramite.asunto,
    "codigo": Tramite.codigo,
    "estado": Tramite.estado,
}

MAX_ASUNTO_LENGTH = 255
MAX_PAGE_SIZE = 100


def _parse_id(value: object, field_name: str) -> int:
    raw = str(value if value is not None else "").strip()
    if not (raw.isascii() and raw.isdecimal()):
        raise ValidationFailed(f"{field_name} invalido")
    return int(raw)


def _parse_optional_id(value: object, field_name: str) -> int | None:
    if value in (None, ""):
        return None
    return _parse_id(value, field_name)


def _parse_bool(value: object) -> bool | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "si", "yes", "on"}


def _parse_iso_date(value: str | None, field_name: str) -> date | None:
    raw = (value or "").strip()
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationFailed(f"Fecha invalida: {field_name}") from exc


def _parse_estado(value: str | None) -> TramiteEstado | None:
    raw = (value or "").strip().upper()
    if not raw:
        return None
    try:
        return TramiteEstado[raw]
    except KeyError as exc:
        raise ValidationFailed("Estado invalido") from exc


def _clean_asunto(value: object, required: bool = True) -> str:
    asunto = str(value or "").strip()
    if required and not asunto:
        raise ValidationFailed("El asunto es obligatorio")
    if len(asunto) > MAX_ASUNTO_LENGTH:
        raise ValidationFailed(f"El asunto no puede tener mas de {MAX_ASUNTO_LENGTH} caracteres")
    return asunto


def _log_historial(
    tramite_id: int,
    accion: HistorialAccion,
    detalle: str,
    user_id: int,
    estado_anterior: TramiteEstado | None = None,
    estado_nuevo: TramiteEstado | None = None,
    ip_address: str | None = None,
    datos_adicionales: dict[str, object] | None = None,
) -> None:
    db.session.add(
        HistorialTramite(
            id_tramite=tramite_id,
            accion=accion,
            detalle=detalle,
            estado_anterior=estado_anterior,
            estado_nuevo=estado_nuevo,
            realizado_por=user_id,
            ip_address=ip_address,
            datos_adicionales=datos_adicionales,
        )
    )


def _next_tramite_code(year: int) -> str:
    value_prefix = f"TRAM-{year}-"
    count = (
        db.session.query(func.count(Tramite.id))
        .filter(Tramite.codigo.like(f"{value_prefix}%"))
        .scalar()
    )
    return f"{value_prefix}{count + 1:06d}"


def _transition_tramite(
    tramite: Tramite,
    new_estado: TramiteEstado,
    accion: HistorialAccion,
    detalle: str,
    user_id: int,
    ip_address: str | None = None,
    datos_adicionales: dict[str, object] | None = None,
    **values: object,
) -> None:
    current = tramite.estado
    allowed = TRAMITE_TRANSITIONS.get(current, set())
    if new_estado not in allowed:
        raise PreconditionFailed(
            f"Transicion invalida: {current.value} -> {new_estado.value}",
            {"estado_actual": current.value},
        )
    # Guarded on the state we read so a concurrent writer makes this a no-op.
    result = db.session.execute(
        update(Tramite)
        .where(Tramite.id == tramite.id)
        .where(Tramite.estado == current)
        .values(estado=new_estado, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise PreconditionFailed("El tramite fue modificado por otra operacion. Recargue e intente nuevamente")
    tramite.estado = new_estado
    for key, value in values.items():
        setattr(tramite, key, value)
    _log_historial(
        tramite.id,
        accion,
        detalle,
        user_id,
        estado_anterior=current,
        estado_nuevo=new_estado,
        ip_address=ip_address,
        datos_adicionales=datos_adicionales,
    )


def _commit() -> None:
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        raise


def document_flags(documento_id: int) -> DocumentFlags:
    row = (
        db.session.query(
            Documento.id,
            Documento.titulo,
            Documento.id_tipo,
            TipoDocumento.requiere_firma,
            TipoDocumento.requiere_respuesta,
        )
        .outerjoin(TipoDocumento, TipoDocumento.id == Documento.id_tipo)
        .filter(Documento.id == documento_id)
        .first()
    )
    if row is None:
        raise NotFound("Documento no encontrado")
    if row.id_tipo is None or row.requiere_firma is None:
        raise NotFound("Tipo de documento no encontrado")
    return DocumentFlags(
        documento_id=row.id,
        titulo=row.titulo,
        requiere_firma=bool(row.requiere_firma),
        requiere_respuesta=bool(row.requiere_respuesta),
    )


def _require_worker(user_id: int) -> None:
    try:
        activo, roles = user_capabilities(user_id)
    except NotFound as exc:
        raise NotFound("Receptor no encontrado") from exc
    if not activo:
        raise PreconditionFailed("El receptor esta inactivo")
    if ROL_TRABAJADOR not in roles:
        raise PreconditionFailed("El receptor debe tener el rol de trabajador")


def _sender_area(actor_id: int) -> int:
    require_capability(
        actor_id,
        ROL_RESPONSABLE,
        ROL_ADMIN,
        message="Solo responsables de area o administradores pueden enviar tramites",
    )
    id_area = db.session.query(User.id_area).filter(User.id == actor_id).scalar()
    if id_area is None:
        raise PreconditionFailed("El remitente no tiene un area asignada")
    return id_area


def tramite_by_id(tramite_id: int) -> Tramite:
    tramite = db.session.get(Tramite, tramite_id)
    if not tramite:
        raise NotFound("Tramite no encontrado")
    return tramite


def _can_view(tramite: Tramite, actor_id: int) -> bool:
    if actor_id in (tramite.id_remitente, tramite.id_receptor):
        return True
    activo, roles = user_capabilities(actor_id)
    if not activo:
        return False
    if ROL_ADMIN in roles:
        return True
    if ROL_RESPONSABLE in roles:
        id_area = db.session.query(User.id_area).filter(User.id == actor_id).scalar()
        return id_area is not None and id_area == tramite.id_area_remitente
    return False


def visible_tramite(tramite_id: int, actor_id: int) -> Tramite:
    tramite = tramite_by_id(tramite_id)
    if not _can_view(tramite, actor_id):
        raise PreconditionFailed("No tiene acceso a este tramite")
    return tramite


def _notify_new_tramite(tramite: Tramite) -> None:
    notify(
        tramite.id_receptor,
        NotificacionTipo.TRAMITE_RECIBIDO,
        tramite.id,
        f"Nuevo tramite recibido: {tramite.asunto}",
        f"Ha recibido el tramite {tramite.codigo}",
        {"codigo": tramite.codigo},
    )
    if tramite.requiere_firma:
        notify(
            tramite.id_receptor,
            NotificacionTipo.DOCUMENTO_REQUIERE_FIRMA,
            tramite.id,
            "Documento pendiente de firma",
            f"El tramite {tramite.codigo} requiere su firma electronica",
            {"codigo": tramite.codigo},
        )


def _build_tramite(
    flags: DocumentFlags,
    actor_id: int,
    id_area: int,
    receptor_id: int,
    asunto: str,
    mensaje: str | None,
) -> Tramite:
    tramite = Tramite(
        codigo=_next_tramite_code(utcnow().year),
        estado=TramiteEstado.ENVIADO,
        id_documento=flags.documento_id,
        id_remitente=actor_id,
        id_area_remitente=id_area,
        id_receptor=receptor_id,
        asunto=asunto,
        mensaje=mensaje or None,
        requiere_firma=flags.requiere_firma,
        requiere_respuesta=flags.requiere_respuesta,
        fecha_envio=utcnow(),
    )
    db.session.add(tramite)
    db.session.flush()
    _log_historial(
        tramite.id,
        HistorialAccion.CREACION,
        f"Tramite {tramite.codigo} creado y enviado",
        actor_id,
        estado_nuevo=TramiteEstado.ENVIADO,
    )
    return tramite


def create_tramite(payload: dict[str, object], actor_id: int) -> Tramite:
    documento_id = _parse_id(payload.get("id_documento"), "Documento")
    receptor_id = _parse_id(payload.get("id_receptor"), "Receptor")
    asunto = _clean_asunto(payload.get("asunto"))
    mensaje = str(payload.get("mensaje") or "").strip()

    id_area = _sender_area(actor_id)
    flags = document_flags(documento_id)
    _require_worker(receptor_id)

    tramite = _build_tramite(flags, actor_id, id_area, receptor_id, asunto, mensaje)
    _commit()
    logger.info("Tramite %s creado por usuario %s para %s", tramite.codigo, actor_id, receptor_id)
    _notify_new_tramite(tramite)
    return tramite


def create_tramites_bulk(payload: dict[str, object], actor_id: int) -> list[Tramite]:
    documento_id = _parse_id(payload.get("id_documento"), "Documento")
    raw_receptores = payload.get("id_receptores") or []
    if not isinstance(raw_receptores, (list, tuple)) or not raw_receptores:
        raise ValidationFailed("Debe seleccionar al menos un receptor")
    receptores: list[int] = []
    for value in raw_receptores:
        receptor_id = _parse_id(value, "Receptor")
        if receptor_id not in receptores:
            receptores.append(receptor_id)
    asunto = _clean_asunto(payload.get("asunto"))
    mensaje = str(payload.get("mensaje") or "").strip()

    id_area = _sender_area(actor_id)
    flags = document_flags(documento_id)
    for receptor_id in receptores:
        _require_worker(receptor_id)

    tramites = [
        _build_tramite(flags, actor_id, id_area, receptor_id, asunto, mensaje) for receptor_id in receptores
    ]
    _commit()
    logger.info("Envio masivo de %s tramites por usuario %s", len(tramites), actor_id)
    for tramite in tramites:
        _notify_new_tramite(tramite)
    return tramites


def _require_receiver(tramite: Tramite, actor_id: int, action: str) -> None:
    if tramite.id_receptor != actor_id:
        raise PreconditionFailed(f"Solo el receptor puede {action} el tramite")


def open_tramite(tramite_id: int, actor_id: int, ip_address: str | None = None) -> Tramite:
    tramite = tramite_by_id(tramite_id)
    _require_receiver(tramite, actor_id, "abrir")
    _transition_tramite(
        tramite,
        TramiteEstado.ABIERTO,
        HistorialAccion.APERTURA,
        "Documento abierto por el receptor",
        actor_id,
        ip_address=ip_address,
        fecha_abierto=utcnow(),
    )
    _commit()
    return tramite


def read_tramite(tramite_id: int, actor_id: int, ip_address: str | None = None) -> Tramite:
    tramite = tramite_by_id(tramite_id)
    _require_receiver(tramite, actor_id, "leer")
    _transition_tramite(
        tramite,
        TramiteEstado.LEIDO,
        HistorialAccion.LECTURA,
        "Documento leido por el receptor",
        actor_id,
        ip_address=ip_address,
        fecha_leido=utcnow(),
    )
    _commit()
    return tramite


def _check_signable(tramite: Tramite, actor_id: int, acepta_terminos: bool) -> None:
    _require_receiver(tramite, actor_id, "firmar")
    if not tramite.requiere_firma:
        raise PreconditionFailed("Este tramite no requiere firma electronica")
    if tramite.estado != TramiteEstado.LEIDO:
        raise PreconditionFailed(
            "El documento debe estar leido antes de firmarlo",
            {"estado_actual": tramite.estado.value},
        )
    if tramite.firma is not None:
        raise PreconditionFailed("El tramite ya fue firmado")
    if not acepta_terminos:
        raise ValidationFailed("Debe aceptar los terminos para firmar el documento")


def sign_tramite(
    tramite_id: int,
    actor_id: int,
    proof: CodigoValidado,
    acepta_terminos: bool,
    ip_address: str,
    user_agent: str,
) -> FirmaElectronica:
    """Attach the signature. Leaves the unit of work open for the caller to commit."""
    if proof is None or (proof.tramite_id, proof.user_id) != (tramite_id, actor_id):
        raise PreconditionFailed("Se requiere un codigo de verificacion validado para firmar")
    tramite = tramite_by_id(tramite_id)
    _check_signable(tramite, actor_id, acepta_terminos)

    now = utcnow()
    firma = FirmaElectronica(
        id_tramite=tramite.id,
        acepta_terminos=True,
        ip_address=(ip_address or "")[:64],
        navegador=extract_browser(user_agent),
        dispositivo=extract_device(user_agent),
        fecha_firma=now,
    )
    db.session.add(firma)
    _transition_tramite(
        tramite,
        TramiteEstado.FIRMADO,
        HistorialAccion.FIRMA,
        "Documento firmado electronicamente",
        actor_id,
        ip_address=ip_address,
        datos_adicionales={"codigo_verificacion": proof.codigo_id, "navegador": firma.navegador},
        fecha_firmado=now,
    )
    return firma


def verify_and_sign(
    tramite_id: int,
    actor_id: int,
    codigo: str,
    acepta_terminos: bool,
    ip_address: str,
    user_agent: str,
) -> FirmaElectronica:
    tramite = tramite_by_id(tramite_id)
    _check_signable(tramite, actor_id, acepta_terminos)

    proof = validate_code(tramite_id, actor_id, codigo, ip_address)
    try:
        firma = sign_tramite(tramite_id, actor_id, proof, acepta_terminos, ip_address, user_agent)
        db.session.commit()
    except (TramiteError, SQLAlchemyError):
        db.session.rollback()
        raise

    logger.info("Tramite %s firmado por usuario %s", tramite.codigo, actor_id)
    notify(
        tramite.id_remitente,
        NotificacionTipo.TRAMITE_FIRMADO,
        tramite.id,
        f"Tramite firmado: {tramite.asunto}",
        f"El tramite {tramite.codigo} fue firmado por el receptor",
        {"codigo": tramite.codigo},
    )
    return firma


def respond_tramite(tramite: Tramite, actor_id: int, ip_address: str | None = None) -> None:
    _transition_tramite(
        tramite,
        TramiteEstado.RESPONDIDO,
        HistorialAccion.RESPUESTA,
        "Conformidad registrada por el receptor",
        actor_id,
        ip_address=ip_address,
        fecha_respondido=utcnow(),
    )


def create_respuesta(
    tramite_id: int,
    payload: dict[str, object],
    actor_id: int,
    ip_address: str,
    user_agent: str,
) -> RespuestaTramite:
    tramite = tramite_by_id(tramite_id)
    _require_receiver(tramite, actor_id, "responder")
    if not tramite.requiere_respuesta:
        raise PreconditionFailed("Este tramite no requiere respuesta de conformidad")
    if tramite.respuesta is not None:
        raise PreconditionFailed("El tramite ya tiene una respuesta registrada")
    if tramite.estado != TramiteEstado.LEIDO:
        raise PreconditionFailed(
            "El documento debe estar leido antes de responder",
            {"estado_actual": tramite.estado.value},
        )
    if _parse_bool(payload.get("acepta_conformidad")) is not True:
        raise ValidationFailed("Debe aceptar la conformidad para registrar la respuesta")

    respuesta = RespuestaTramite(
        id_tramite=tramite.id,
        texto_respuesta="Conforme",
        esta_conforme=True,
        ip_address=(ip_address or "")[:64],
        navegador=extract_browser(user_agent),
        dispositivo=extract_device(user_agent),
        fecha_respuesta=utcnow(),
    )
    db.session.add(respuesta)
    respond_tramite(tramite, actor_id, ip_address)
    _commit()

    logger.info("Conformidad registrada en tramite %s por usuario %s", tramite.codigo, actor_id)
    notify(
        tramite.id_remitente,
        NotificacionTipo.RESPUESTA_RECIBIDA,
        tramite.id,
        f"Conformidad recibida: {tramite.asunto}",
        f"El receptor dio su conformidad al tramite {tramite.codigo}",
        {"codigo": tramite.codigo},
    )
    return respuesta


def annul_tramite(tramite_id: int, actor_id: int, motivo: str) -> Tramite:
    tramite = tramite_by_id(tramite_id)
    motivo = (motivo or "").strip()
    if not motivo:
        raise ValidationFailed("El motivo de anulacion es obligatorio")
    if tramite.id_remitente != actor_id:
        if not has_capability(actor_id, ROL_ADMIN):
            raise PreconditionFailed("Solo el remitente o un administrador puede anular el tramite")
    if tramite.estado not in ACTIVE_STATES:
        raise PreconditionFailed(
            f"No se puede anular un tramite en estado {tramite.estado.value}",
            {"estado_actual": tramite.estado.value},
        )

    now = utcnow()
    _transition_tramite(
        tramite,
        TramiteEstado.ANULADO,
        HistorialAccion.ANULACION,
        f"Tramite anulado: {motivo}",
        actor_id,
        datos_adicionales={"motivo": motivo},
        fecha_anulado=now,
        anulado_por=actor_id,
        motivo_anulacion=motivo,
    )
    _commit()

    logger.info("Tramite %s anulado por usuario %s", tramite.codigo, actor_id)
    notify(
        tramite.id_receptor,
        NotificacionTipo.TRAMITE_ANULADO,
        tramite.id,
        f"Tramite anulado: {tramite.asunto}",
        f"El tramite {tramite.codigo} fue anulado. Motivo: {motivo}",
        {"codigo": tramite.codigo, "motivo": motivo},
    )
    return tramite


def chain_root_id(tramite: Tramite) -> int:
    return tramite.id_tramite_original or tramite.id


def notify_resubmission(nuevo: Tramite) -> None:
    notify(
        nuevo.id_receptor,
        NotificacionTipo.TRAMITE_REENVIADO,
        nuevo.id,
        f"Nueva version del tramite: {nuevo.asunto}",
        f"Se envio la version {nuevo.numero_version} ({nuevo.codigo})",
        {"codigo": nuevo.codigo, "numero_version": nuevo.numero_version},
    )
    if nuevo.requiere_firma:
        notify(
            nuevo.id_receptor,
            NotificacionTipo.DOCUMENTO_REQUIERE_FIRMA,
            nuevo.id,
            "Documento pendiente de firma",
            f"El tramite {nuevo.codigo} requiere su firma electronica",
            {"codigo": nuevo.codigo},
        )


def fork_tramite(
    original_id: int,
    payload: dict[str, object],
    actor_id: int,
    commit: bool = True,
) -> Tramite:
    """Resubmit ``original_id`` with a corrected document as a new version of its chain."""
    original = tramite_by_id(original_id)
    if original.id_remitente != actor_id:
        raise PreconditionFailed("Solo el remitente puede reenviar el tramite")
    documento_id = _parse_id(payload.get("id_documento"), "Documento")
    motivo = str(payload.get("motivo_reenvio") or "").strip()
    if not motivo:
        raise ValidationFailed("El motivo del reenvio es obligatorio")
    asunto = _clean_asunto(payload.get("asunto"), required=False) or original.asunto
    mensaje = str(payload.get("mensaje") or "").strip() or original.mensaje
    flags = document_flags(documento_id)

    root_id = chain_root_id(original)
    forks = (
        db.session.query(func.count(Tramite.id))
        .filter(Tramite.id_tramite_original == root_id)
        .scalar()
    )
    numero_version = forks + 2

    nuevo = Tramite(
        codigo=_next_tramite_code(utcnow().year),
        estado=TramiteEstado.ENVIADO,
        id_documento=flags.documento_id,
        id_remitente=original.id_remitente,
        id_area_remitente=original.id_area_remitente,
        id_receptor=original.id_receptor,
        asunto=asunto,
        mensaje=mensaje,
        requiere_firma=flags.requiere_firma,
        requiere_respuesta=flags.requiere_respuesta,
        fecha_envio=utcnow(),
        es_reenvio=True,
        id_tramite_original=root_id,
        numero_version=numero_version,
        motivo_reenvio=motivo,
    )
    db.session.add(nuevo)
    db.session.flush()
    _log_historial(
        nuevo.id,
        HistorialAccion.REENVIO,
        f"Reenvio del tramite {original.codigo} (version {numero_version})",
        actor_id,
        estado_nuevo=TramiteEstado.ENVIADO,
        datos_adicionales={
            "tramite_original": root_id,
            "tramite_origen": original.id,
            "codigo_origen": original.codigo,
            "numero_version": numero_version,
            "motivo": motivo,
        },
    )
    if commit:
        _commit()
        logger.info("Tramite %s reenviado como %s (v%s)", original.codigo, nuevo.codigo, numero_version)
        notify_resubmission(nuevo)
    return nuevo


def version_chain(tramite_id: int, actor_id: int | None = None) -> list[Tramite]:
    tramite = visible_tramite(tramite_id, actor_id) if actor_id is not None else tramite_by_id(tramite_id)
    root = tramite_by_id(chain_root_id(tramite))
    forks = (
        Tramite.query.filter(Tramite.id_tramite_original == root.id)
        .order_by(Tramite.numero_version.asc())
        .all()
    )
    return [root, *forks]


def tramite_history(tramite_id: int, actor_id: int) -> list[HistorialTramite]:
    tramite = visible_tramite(tramite_id, actor_id)
    return (
        HistorialTramite.query.filter_by(id_tramite=tramite.id)
        .order_by(HistorialTramite.fecha.asc(), HistorialTramite.id.asc())
        .all()
    )


def tramite_detail(tramite_id: int, actor_id: int) -> dict[str, object]:
    tramite = visible_tramite(tramite_id, actor_id)
    observaciones = (
        Observacion.query.filter_by(id_tramite=tramite.id).order_by(Observacion.fecha_creacion.asc()).all()
    )
    return {
        "tramite": tramite,
        "documento": tramite.documento,
        "firma": tramite.firma,
        "respuesta": tramite.respuesta,
        "observaciones": observaciones,
        "observaciones_pendientes": sum(1 for obs in observaciones if not obs.resuelta),
        "versiones": version_chain(tramite.id),
    }


def _scope_filter(query, actor_id: int):
    activo, roles = user_capabilities(actor_id)
    if not activo:
        raise PreconditionFailed("Usuario inactivo")
    if ROL_ADMIN in roles:
        return query
    conditions = [Tramite.id_receptor == actor_id, Tramite.id_remitente == actor_id]
    if ROL_RESPONSABLE in roles:
        id_area = db.session.query(User.id_area).filter(User.id == actor_id).scalar()
        if id_area is not None:
            conditions.append(Tramite.id_area_remitente == id_area)
    return query.filter(or_(*conditions))


def list_tramites(filters: dict[str, str], actor_id: int) -> dict[str, object]:
    query = _scope_filter(Tramite.query, actor_id)

    estado = _parse_estado(filters.get("estado"))
    if estado:
        query = query.filter(Tramite.estado == estado)
    for flag in ("requiere_firma", "requiere_respuesta", "es_reenvio"):
        value = _parse_bool(filters.get(flag))
        if value is not None:
            query = query.filter(getattr(Tramite, flag).is_(value))
    for field_name in ("id_remitente", "id_receptor", "id_area_remitente"):
        value = _parse_optional_id(filters.get(field_name), field_name)
        if value is not None:
            query = query.filter(getattr(Tramite, field_name) == value)
    id_tipo = _parse_optional_id(filters.get("id_tipo_documento"), "Tipo de documento")
    if id_tipo is not None:
        query = query.join(Documento, Documento.id == Tramite.id_documento).filter(Documento.id_tipo == id_tipo)

    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        query = query.filter(or_(Tramite.codigo.ilike(like), Tramite.asunto.ilike(like)))

    desde = _parse_iso_date(filters.get("fecha_envio_desde"), "fecha envio desde")
    hasta = _parse_iso_date(filters.get("fecha_envio_hasta"), "fecha envio hasta")
    if desde:
        query = query.filter(Tramite.fecha_envio >= datetime.combine(desde, time.min))
    if hasta:
        query = query.filter(Tramite.fecha_envio < datetime.combine(hasta + timedelta(days=1), time.min))

    pendientes = _parse_bool(filters.get("observaciones_pendientes"))
    if pendientes:
        query = query.filter(
            Tramite.observaciones.any(Observacion.resuelta.is_(False))
        )
    con_observaciones = _parse_bool(filters.get("tiene_observaciones"))
    if con_observaciones is not None:
        exists = Tramite.observaciones.any()
        query = query.filter(exists if con_observaciones else ~exists)

    order_field = TRAMITE_ORDER_FIELDS.get((filters.get("ordenar_por") or "fecha_envio").strip())
    if order_field is None:
        raise ValidationFailed("Campo de ordenamiento invalido")
    direction = (filters.get("orden") or "desc").strip().lower()
    if direction not in {"asc", "desc"}:
        raise ValidationFailed("Orden invalido (debe ser asc o desc)")
    ordering = order_field.asc() if direction == "asc" else order_field.desc()
    query = query.order_by(ordering, Tramite.id.desc())

    page = _parse_optional_id(filters.get("page"), "Pagina") or 1
    page_size = max(1, min(_parse_optional_id(filters.get("page_size"), "Tamano de pagina") or 20, MAX_PAGE_SIZE))
    total = query.count()
    rows = query.offset((page - 1) * page_size).limit(page_size).all()
    return {
        "rows": rows,
        "page": page,
        "page_size": page_size,
        "total": total,
        "pages": max(1, (total + page_size - 1) // page_size),
    }


def tramite_statistics(actor_id: int) -> dict[str, object]:
    scoped = _scope_filter(Tramite.query, actor_id)
    por_estado = {estado.value: 0 for estado in TramiteEstado}
    for estado, total in (
        scoped.with_entities(Tramite.estado, func.count(Tramite.id)).group_by(Tramite.estado).all()
    ):
        por_estado[estado.value] = total
    por_area = [
        {"id_area": area_id, "area": nombre, "total": total}
        for area_id, nombre, total in (
            scoped.join(Area, Area.id == Tramite.id_area_remitente)
            .with_entities(Area.id, Area.nombre, func.count(Tramite.id))
            .group_by(Area.id, Area.nombre)
            .order_by(Area.nombre.asc())
            .all()
        )
    ]
    total = sum(por_estado.values())
    pendientes_firma = (
        scoped.filter(Tramite.requiere_firma.is_(True)).filter(Tramite.estado.in_(ACTIVE_STATES)).count()
    )
    reenvios = scoped.filter(Tramite.es_reenvio.is_(True)).count()
    completados = por_estado[TramiteEstado.FIRMADO.value] + por_estado[TramiteEstado.RESPONDIDO.value]
    return {
        "total": total,
        "por_estado": por_estado,
        "por_area": por_area,
        "pendientes_firma": pendientes_firma,
        "reenvios": reenvios,
        "tasa_completados": round(completados * 100 / total, 2) if total else 0.0,
    }


def firma_for_tramite(tramite_id: int, actor_id: int) -> FirmaElectronica:
    tramite = visible_tramite(tramite_id, actor_id)
    if tramite.firma is None:
        raise NotFound("El tramite no tiene firma electronica")
    return tramite.firma


def firma_status(tramite_id: int) -> dict[str, object]:
    tramite = tramite_by_id(tramite_id)
    firma = tramite.firma
    return {
        "id_tramite": tramite.id,
        "codigo": tramite.codigo,
        "requiere_firma": tramite.requiere_firma,
        "firmado": firma is not None,
        "fecha_firma": firma.fecha_firma.isoformat() if firma else None,
    }


def respuesta_for_tramite(tramite_id: int, actor_id: int) -> RespuestaTramite:
    tramite = visible_tramite(tramite_id, actor_id)
    if tramite.respuesta is None:
        raise NotFound("El tramite no tiene respuesta de conformidad")
    return tramite.respuesta
