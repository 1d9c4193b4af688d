"""Post-commit user notifications.

Every lifecycle operation calls :func:`notify` only after its own commit. A
notification is persisted as a ``Notificacion`` row and handed to the sink
configured in ``app.extensions["notification_sink"]``. Failures here never
undo or fail the operation that triggered them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from app.core.extensions import db
from app.core.models import Notificacion, NotificacionTipo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationEvent:
    user_id: int
    kind: NotificacionTipo
    tramite_id: int | None
    titulo: str
    mensaje: str
    payload: dict[str, Any] = field(default_factory=dict)


class NotificationSink(Protocol):
    def publish(self, event: NotificationEvent) -> None: ...


class LogNotificationSink:
    def publish(self, event: NotificationEvent) -> None:
        logger.info(
            "Notificacion %s para usuario %s (tramite %s): %s",
            event.kind.value,
            event.user_id,
            event.tramite_id,
            event.titulo,
        )


def notification_sink() -> NotificationSink:
    sink = current_app.extensions.get("notification_sink")
    if sink is None:
        sink = LogNotificationSink()
        current_app.extensions["notification_sink"] = sink
    return sink


def notify(
    user_id: int,
    kind: NotificacionTipo,
    tramite_id: int | None,
    titulo: str,
    mensaje: str = "",
    payload: dict[str, Any] | None = None,
) -> None:
    event = NotificationEvent(
        user_id=user_id,
        kind=kind,
        tramite_id=tramite_id,
        titulo=titulo,
        mensaje=mensaje,
        payload=payload or {},
    )
    try:
        db.session.add(
            Notificacion(
                id_usuario=user_id,
                id_tramite=tramite_id,
                tipo=kind,
                titulo=titulo,
                mensaje=mensaje,
            )
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("No se pudo persistir la notificacion %s para usuario %s", kind.value, user_id)
    try:
        notification_sink().publish(event)
    except Exception:
        logger.exception("Fallo publicando la notificacion %s para usuario %s", kind.value, user_id)
