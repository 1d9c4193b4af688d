"""Reporting for area heads: trends, per-worker performance and response times.

RESP users see the tramites sent from their own area. ADMIN users see every
area unless they narrow the report with ``id_area``.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from sqlalchemy import func

from app.core.errors import ValidationFailed
from app.core.extensions import db
from app.core.models import (
    Documento,
    HistorialTramite,
    Rol,
    TipoDocumento,
    Tramite,
    TramiteEstado,
    User,
    UsuarioRol,
    utcnow,
)
from app.core.permissions import ROL_ADMIN, ROL_RESPONSABLE, ROL_TRABAJADOR, require_capability
from app.core.utils import as_utc
from app.tramites.services import ACTIVE_STATES, _parse_optional_id

PERIOD_DAYS = {"semana": 7, "mes": 30, "trimestre": 90, "anio": 365}
COMPLETED_STATES = (TramiteEstado.FIRMADO, TramiteEstado.RESPONDIDO)
RANKING_SIZE = 5
RECENT_ACTIVITY_DAYS = 7
RECENT_ACTIVITY_LIMIT = 20


def _report_area(actor_id: int, requested_area: object = None) -> int | None:
    roles = require_capability(
        actor_id,
        ROL_RESPONSABLE,
        ROL_ADMIN,
        message="Solo responsables de area o administradores pueden ver estadisticas",
    )
    if ROL_ADMIN in roles:
        return _parse_optional_id(requested_area, "Area")
    return db.session.query(User.id_area).filter(User.id == actor_id).scalar()


def _area_tramites(id_area: int | None):
    query = Tramite.query
    if id_area is not None:
        query = query.filter(Tramite.id_area_remitente == id_area)
    return query


def _hours(start: datetime | None, end: datetime | None) -> float | None:
    if start is None or end is None:
        return None
    return (as_utc(end) - as_utc(start)).total_seconds() / 3600


def _summary(values: list[float]) -> dict[str, float]:
    if not values:
        return {"promedio": 0.0, "minimo": 0.0, "maximo": 0.0}
    return {
        "promedio": round(sum(values) / len(values), 2),
        "minimo": round(min(values), 2),
        "maximo": round(max(values), 2),
    }


def _daily_series(dates: list[datetime], start: date, end: date) -> list[dict[str, object]]:
    counts: dict[date, int] = {}
    for value in dates:
        day = as_utc(value).date()
        counts[day] = counts.get(day, 0) + 1
    series = []
    day = start
    while day <= end:
        series.append({"fecha": day.isoformat(), "cantidad": counts.get(day, 0)})
        day += timedelta(days=1)
    return series


def period_statistics(actor_id: int, periodo: str | None = None, id_area: object = None) -> dict[str, object]:
    area = _report_area(actor_id, id_area)
    periodo = (periodo or "mes").strip().lower()
    if periodo not in PERIOD_DAYS:
        raise ValidationFailed("Periodo invalido (semana, mes, trimestre o anio)")

    now = utcnow()
    start_day = (now - timedelta(days=PERIOD_DAYS[periodo])).date()
    scoped = _area_tramites(area).filter(Tramite.fecha_envio >= datetime.combine(start_day, time.min))

    envios = [row[0] for row in scoped.with_entities(Tramite.fecha_envio).all()]
    distribucion = [
        {"estado": estado.value, "cantidad": total}
        for estado, total in scoped.with_entities(Tramite.estado, func.count(Tramite.id))
        .group_by(Tramite.estado)
        .all()
    ]
    return {
        "periodo": periodo,
        "fecha_inicio": start_day.isoformat(),
        "fecha_fin": now.date().isoformat(),
        "total_tramites": len(envios),
        "datos_grafico": _daily_series(envios, start_day, now.date()),
        "distribucion_estados": sorted(distribucion, key=lambda item: item["estado"]),
    }


def worker_statistics(actor_id: int, id_area: object = None) -> dict[str, object]:
    """Per-worker totals for the area, best completion rate first."""
    area = _report_area(actor_id, id_area)
    workers_query = (
        User.query.join(UsuarioRol, UsuarioRol.id_usuario == User.id)
        .join(Rol, Rol.id == UsuarioRol.id_rol)
        .filter(Rol.codigo == ROL_TRABAJADOR, User.activo.is_(True))
    )
    if area is not None:
        workers_query = workers_query.filter(User.id_area == area)
    workers = workers_query.order_by(User.apellidos.asc(), User.nombres.asc()).all()

    rows = []
    for worker in workers:
        received = _area_tramites(area).filter(Tramite.id_receptor == worker.id).all()
        total = len(received)
        pendientes = sum(1 for t in received if t.estado in ACTIVE_STATES)
        completados = sum(1 for t in received if t.estado in COMPLETED_STATES)
        tiempos = [h for h in (_hours(t.fecha_envio, t.fecha_leido) for t in received) if h is not None]
        rows.append(
            {
                "id_usuario": worker.id,
                "nombre_completo": worker.full_name,
                "dni": worker.dni,
                "total_recibidos": total,
                "pendientes": pendientes,
                "completados": completados,
                "porcentaje_completado": round(completados * 100 / total, 2) if total else 0.0,
                "promedio_tiempo_respuesta_horas": _summary(tiempos)["promedio"],
            }
        )
    rows.sort(key=lambda row: row["porcentaje_completado"], reverse=True)
    return {"total_trabajadores": len(rows), "trabajadores": rows}


def efficiency_ranking(actor_id: int, id_area: object = None) -> dict[str, object]:
    trabajadores = worker_statistics(actor_id, id_area)["trabajadores"]
    # Workers that never read anything have no response time to rank.
    con_tiempo = [row for row in trabajadores if row["total_recibidos"] and row["promedio_tiempo_respuesta_horas"]]
    return {
        "top_completado": trabajadores[:RANKING_SIZE],
        "top_velocidad": sorted(con_tiempo, key=lambda row: row["promedio_tiempo_respuesta_horas"])[:RANKING_SIZE],
    }


def response_times(actor_id: int, id_area: object = None) -> dict[str, object]:
    area = _report_area(actor_id, id_area)
    tramites = _area_tramites(area).filter(Tramite.fecha_leido.isnot(None)).all()

    envio_apertura = [_hours(t.fecha_envio, t.fecha_abierto) for t in tramites]
    apertura_lectura = [_hours(t.fecha_abierto, t.fecha_leido) for t in tramites]
    lectura_firma = [_hours(t.fecha_leido, t.fecha_firmado) for t in tramites]
    total = [_hours(t.fecha_envio, t.fecha_leido) for t in tramites]
    return {
        "envio_a_apertura": _summary([h for h in envio_apertura if h is not None]),
        "apertura_a_lectura": _summary([h for h in apertura_lectura if h is not None]),
        "lectura_a_firma": _summary([h for h in lectura_firma if h is not None]),
        "tiempo_total": _summary([h for h in total if h is not None]),
        "total_muestras": len(tramites),
    }


def document_type_statistics(actor_id: int, id_area: object = None) -> dict[str, object]:
    area = _report_area(actor_id, id_area)
    rows = (
        _area_tramites(area)
        .join(Documento, Documento.id == Tramite.id_documento)
        .join(TipoDocumento, TipoDocumento.id == Documento.id_tipo)
        .with_entities(TipoDocumento.id, TipoDocumento.codigo, TipoDocumento.nombre, Tramite.estado)
        .all()
    )
    tipos: dict[int, dict[str, object]] = {}
    for tipo_id, codigo, nombre, estado in rows:
        stats = tipos.setdefault(
            tipo_id,
            {"codigo": codigo, "nombre": nombre, "total": 0, "firmados": 0, "respondidos": 0, "pendientes": 0},
        )
        stats["total"] += 1
        if estado == TramiteEstado.FIRMADO:
            stats["firmados"] += 1
        elif estado == TramiteEstado.RESPONDIDO:
            stats["respondidos"] += 1
        elif estado in ACTIVE_STATES:
            stats["pendientes"] += 1
    distribucion = sorted(tipos.values(), key=lambda item: (-item["total"], item["codigo"]))
    return {"total_tipos": len(distribucion), "distribucion": distribucion}


def recent_activity(actor_id: int, id_area: object = None) -> dict[str, object]:
    area = _report_area(actor_id, id_area)
    today = utcnow().date()
    start_day = today - timedelta(days=RECENT_ACTIVITY_DAYS - 1)
    query = HistorialTramite.query.join(Tramite, Tramite.id == HistorialTramite.id_tramite).filter(
        HistorialTramite.fecha >= datetime.combine(start_day, time.min)
    )
    if area is not None:
        query = query.filter(Tramite.id_area_remitente == area)

    ultimas = (
        query.order_by(HistorialTramite.fecha.desc(), HistorialTramite.id.desc())
        .limit(RECENT_ACTIVITY_LIMIT)
        .all()
    )
    fechas = [row[0] for row in query.with_entities(HistorialTramite.fecha).all()]
    return {
        "ultimas_actividades": [
            {
                "id": entry.id,
                "accion": entry.accion.value,
                "detalle": entry.detalle,
                "fecha": as_utc(entry.fecha).isoformat(),
                "tramite_codigo": entry.tramite.codigo,
                "tramite_asunto": entry.tramite.asunto,
                "usuario": entry.usuario.full_name if entry.usuario else "Sistema",
            }
            for entry in ultimas
        ],
        "actividad_diaria": _daily_series(fechas, start_day, today),
    }
