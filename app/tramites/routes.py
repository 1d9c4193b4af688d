from __future__ import annotations

from datetime import datetime

from flask import jsonify, request
from flask_login import current_user, login_required

from app.core.models import (
    FirmaElectronica,
    HistorialTramite,
    Observacion,
    RespuestaTramite,
    Tramite,
)
from app.core.permissions import ROL_ADMIN, require_capability
from app.core.utils import client_ip
from app.tramites import tramites_bp
from app.tramites.estadisticas import (
    document_type_statistics,
    efficiency_ranking,
    period_statistics,
    recent_activity,
    response_times,
    worker_statistics,
)
from app.tramites.observaciones import (
    create_observacion,
    observacion_by_id,
    observacion_statistics,
    observaciones_for_tramite,
    pending_observaciones,
    resolve_observacion,
)
from app.tramites.services import (
    _parse_bool,
    annul_tramite,
    create_respuesta,
    create_tramite,
    create_tramites_bulk,
    firma_for_tramite,
    firma_status,
    fork_tramite,
    list_tramites,
    open_tramite,
    read_tramite,
    respuesta_for_tramite,
    tramite_detail,
    tramite_history,
    tramite_statistics,
    verify_and_sign,
    version_chain,
)
from app.tramites.verificacion import issue_code, verification_statistics


def _payload() -> dict[str, object]:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _user_name(user) -> str | None:
    return user.full_name if user else None


def tramite_json(tramite: Tramite) -> dict[str, object]:
    return {
        "id": tramite.id,
        "codigo": tramite.codigo,
        "estado": tramite.estado.value,
        "asunto": tramite.asunto,
        "mensaje": tramite.mensaje,
        "id_documento": tramite.id_documento,
        "documento": tramite.documento.titulo if tramite.documento else None,
        "id_remitente": tramite.id_remitente,
        "remitente": _user_name(tramite.remitente),
        "id_area_remitente": tramite.id_area_remitente,
        "id_receptor": tramite.id_receptor,
        "receptor": _user_name(tramite.receptor),
        "requiere_firma": tramite.requiere_firma,
        "requiere_respuesta": tramite.requiere_respuesta,
        "fecha_envio": _iso(tramite.fecha_envio),
        "fecha_abierto": _iso(tramite.fecha_abierto),
        "fecha_leido": _iso(tramite.fecha_leido),
        "fecha_firmado": _iso(tramite.fecha_firmado),
        "fecha_respondido": _iso(tramite.fecha_respondido),
        "fecha_anulado": _iso(tramite.fecha_anulado),
        "es_reenvio": tramite.es_reenvio,
        "id_tramite_original": tramite.id_tramite_original,
        "numero_version": tramite.numero_version,
        "motivo_reenvio": tramite.motivo_reenvio,
        "anulado_por": tramite.anulado_por,
        "motivo_anulacion": tramite.motivo_anulacion,
    }


def historial_json(entry: HistorialTramite) -> dict[str, object]:
    return {
        "id": entry.id,
        "id_tramite": entry.id_tramite,
        "accion": entry.accion.value,
        "detalle": entry.detalle,
        "estado_anterior": entry.estado_anterior.value if entry.estado_anterior else None,
        "estado_nuevo": entry.estado_nuevo.value if entry.estado_nuevo else None,
        "realizado_por": entry.realizado_por,
        "usuario": _user_name(entry.usuario),
        "ip_address": entry.ip_address,
        "datos_adicionales": entry.datos_adicionales,
        "fecha": _iso(entry.fecha),
    }


def observacion_json(observacion: Observacion) -> dict[str, object]:
    return {
        "id": observacion.id,
        "id_tramite": observacion.id_tramite,
        "creado_por": observacion.creado_por,
        "tipo": observacion.tipo.value,
        "descripcion": observacion.descripcion,
        "resuelta": observacion.resuelta,
        "fecha_creacion": _iso(observacion.fecha_creacion),
        "fecha_resolucion": _iso(observacion.fecha_resolucion),
        "resuelto_por": observacion.resuelto_por,
        "respuesta": observacion.respuesta,
        "id_tramite_reenvio": observacion.id_tramite_reenvio,
    }


def firma_json(firma: FirmaElectronica) -> dict[str, object]:
    return {
        "id": firma.id,
        "id_tramite": firma.id_tramite,
        "acepta_terminos": firma.acepta_terminos,
        "ip_address": firma.ip_address,
        "navegador": firma.navegador,
        "dispositivo": firma.dispositivo,
        "fecha_firma": _iso(firma.fecha_firma),
    }


def respuesta_json(respuesta: RespuestaTramite) -> dict[str, object]:
    return {
        "id": respuesta.id,
        "id_tramite": respuesta.id_tramite,
        "texto_respuesta": respuesta.texto_respuesta,
        "esta_conforme": respuesta.esta_conforme,
        "ip_address": respuesta.ip_address,
        "navegador": respuesta.navegador,
        "dispositivo": respuesta.dispositivo,
        "fecha_respuesta": _iso(respuesta.fecha_respuesta),
    }


@tramites_bp.post("/tramites")
@login_required
def tramite_create():
    tramite = create_tramite(_payload(), current_user.id)
    return jsonify(tramite_json(tramite)), 201


@tramites_bp.post("/tramites/bulk")
@login_required
def tramite_create_bulk():
    tramites = create_tramites_bulk(_payload(), current_user.id)
    return jsonify({"total": len(tramites), "tramites": [tramite_json(t) for t in tramites]}), 201


@tramites_bp.get("/tramites")
@login_required
def tramite_list():
    result = list_tramites(request.args.to_dict(), current_user.id)
    return jsonify(
        {
            "rows": [tramite_json(t) for t in result["rows"]],
            "page": result["page"],
            "page_size": result["page_size"],
            "total": result["total"],
            "pages": result["pages"],
        }
    )


@tramites_bp.get("/tramites/estadisticas")
@login_required
def tramite_stats():
    return jsonify(tramite_statistics(current_user.id))


@tramites_bp.get("/tramites/<int:tramite_id>")
@login_required
def tramite_get(tramite_id: int):
    data = tramite_detail(tramite_id, current_user.id)
    return jsonify(
        {
            "tramite": tramite_json(data["tramite"]),
            "firma": firma_json(data["firma"]) if data["firma"] else None,
            "respuesta": respuesta_json(data["respuesta"]) if data["respuesta"] else None,
            "observaciones": [observacion_json(o) for o in data["observaciones"]],
            "observaciones_pendientes": data["observaciones_pendientes"],
            "versiones": [
                {"id": t.id, "codigo": t.codigo, "numero_version": t.numero_version, "estado": t.estado.value}
                for t in data["versiones"]
            ],
        }
    )


@tramites_bp.get("/tramites/<int:tramite_id>/historial")
@login_required
def tramite_history_get(tramite_id: int):
    return jsonify([historial_json(h) for h in tramite_history(tramite_id, current_user.id)])


@tramites_bp.get("/tramites/<int:tramite_id>/versiones")
@login_required
def tramite_versions(tramite_id: int):
    return jsonify([tramite_json(t) for t in version_chain(tramite_id, current_user.id)])


@tramites_bp.patch("/tramites/<int:tramite_id>/abrir")
@login_required
def tramite_open(tramite_id: int):
    tramite = open_tramite(tramite_id, current_user.id, client_ip(request))
    return jsonify(tramite_json(tramite))


@tramites_bp.patch("/tramites/<int:tramite_id>/leer")
@login_required
def tramite_read(tramite_id: int):
    tramite = read_tramite(tramite_id, current_user.id, client_ip(request))
    return jsonify(tramite_json(tramite))


@tramites_bp.post("/tramites/<int:tramite_id>/reenviar")
@login_required
def tramite_resubmit(tramite_id: int):
    tramite = fork_tramite(tramite_id, _payload(), current_user.id)
    return jsonify(tramite_json(tramite)), 201


@tramites_bp.patch("/tramites/<int:tramite_id>/anular")
@login_required
def tramite_annul(tramite_id: int):
    motivo = str(_payload().get("motivo_anulacion") or "")
    tramite = annul_tramite(tramite_id, current_user.id, motivo)
    return jsonify(tramite_json(tramite))


@tramites_bp.post("/tramites/<int:tramite_id>/observaciones")
@login_required
def observacion_create(tramite_id: int):
    observacion = create_observacion(tramite_id, _payload(), current_user.id)
    return jsonify(observacion_json(observacion)), 201


@tramites_bp.get("/tramites/<int:tramite_id>/observaciones")
@login_required
def observacion_list(tramite_id: int):
    return jsonify([observacion_json(o) for o in observaciones_for_tramite(tramite_id, current_user.id)])


@tramites_bp.get("/observaciones/pendientes")
@login_required
def observacion_pending():
    return jsonify([observacion_json(o) for o in pending_observaciones(current_user.id)])


@tramites_bp.get("/observaciones/estadisticas")
@login_required
def observacion_stats():
    return jsonify(observacion_statistics(current_user.id))


@tramites_bp.get("/observaciones/<int:observacion_id>")
@login_required
def observacion_get(observacion_id: int):
    return jsonify(observacion_json(observacion_by_id(observacion_id, current_user.id)))


@tramites_bp.patch("/observaciones/<int:observacion_id>/responder")
@login_required
def observacion_resolve(observacion_id: int):
    result = resolve_observacion(observacion_id, _payload(), current_user.id)
    nuevo = result["tramite_reenvio"]
    return jsonify(
        {
            "observacion": observacion_json(result["observacion"]),
            "tramite_reenvio": tramite_json(nuevo) if nuevo else None,
        }
    )


@tramites_bp.post("/firma-electronica/tramite/<int:tramite_id>/solicitar-codigo")
@login_required
def firma_request_code(tramite_id: int):
    result = issue_code(
        tramite_id,
        current_user.id,
        client_ip(request),
        request.headers.get("User-Agent", ""),
    )
    return jsonify(result)


@tramites_bp.post("/firma-electronica/tramite/<int:tramite_id>/verificar-y-firmar")
@login_required
def firma_verify_and_sign(tramite_id: int):
    data = _payload()
    firma = verify_and_sign(
        tramite_id,
        current_user.id,
        str(data.get("codigo") or ""),
        bool(_parse_bool(data.get("acepta_terminos"))),
        client_ip(request),
        request.headers.get("User-Agent", ""),
    )
    return jsonify(firma_json(firma)), 201


@tramites_bp.get("/firma-electronica/tramite/<int:tramite_id>")
@login_required
def firma_get(tramite_id: int):
    return jsonify(firma_json(firma_for_tramite(tramite_id, current_user.id)))


@tramites_bp.get("/firma-electronica/tramite/<int:tramite_id>/verificar")
@login_required
def firma_verify_status(tramite_id: int):
    return jsonify(firma_status(tramite_id))


@tramites_bp.get("/firma-electronica/verificacion/estadisticas")
@login_required
def firma_code_stats():
    require_capability(current_user.id, ROL_ADMIN)
    return jsonify(verification_statistics())


@tramites_bp.post("/respuesta-tramite/tramite/<int:tramite_id>")
@login_required
def respuesta_create(tramite_id: int):
    respuesta = create_respuesta(
        tramite_id,
        _payload(),
        current_user.id,
        client_ip(request),
        request.headers.get("User-Agent", ""),
    )
    return jsonify(respuesta_json(respuesta)), 201


@tramites_bp.get("/respuesta-tramite/tramite/<int:tramite_id>")
@login_required
def respuesta_get(tramite_id: int):
    return jsonify(respuesta_json(respuesta_for_tramite(tramite_id, current_user.id)))


@tramites_bp.get("/estadisticas/responsable/por-periodo")
@login_required
def stats_by_period():
    return jsonify(period_statistics(current_user.id, request.args.get("periodo"), request.args.get("id_area")))


@tramites_bp.get("/estadisticas/responsable/por-trabajador")
@login_required
def stats_by_worker():
    return jsonify(worker_statistics(current_user.id, request.args.get("id_area")))


@tramites_bp.get("/estadisticas/responsable/tiempos-respuesta")
@login_required
def stats_response_times():
    return jsonify(response_times(current_user.id, request.args.get("id_area")))


@tramites_bp.get("/estadisticas/responsable/tipos-documentos")
@login_required
def stats_document_types():
    return jsonify(document_type_statistics(current_user.id, request.args.get("id_area")))


@tramites_bp.get("/estadisticas/responsable/ranking-eficiencia")
@login_required
def stats_ranking():
    return jsonify(efficiency_ranking(current_user.id, request.args.get("id_area")))


@tramites_bp.get("/estadisticas/responsable/actividad-reciente")
@login_required
def stats_recent_activity():
    return jsonify(recent_activity(current_user.id, request.args.get("id_area")))
