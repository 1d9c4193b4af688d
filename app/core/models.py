from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from flask_login import UserMixin
from sqlalchemy import JSON, Enum as SAEnum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from werkzeug.security import generate_password_hash

from app.core.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TramiteEstado(str, Enum):
    ENVIADO = "ENVIADO"
    ABIERTO = "ABIERTO"
    LEIDO = "LEIDO"
    FIRMADO = "FIRMADO"
    RESPONDIDO = "RESPONDIDO"
    ANULADO = "ANULADO"


class HistorialAccion(str, Enum):
    CREACION = "CREACION"
    APERTURA = "APERTURA"
    LECTURA = "LECTURA"
    FIRMA = "FIRMA"
    RESPUESTA = "RESPUESTA"
    ANULACION = "ANULACION"
    REENVIO = "REENVIO"
    OBSERVACION = "OBSERVACION"
    OBSERVACION_RESUELTA = "OBSERVACION_RESUELTA"
    REENVIO_POR_OBSERVACION = "REENVIO_POR_OBSERVACION"


class ObservacionTipo(str, Enum):
    CONSULTA = "CONSULTA"
    CORRECCION_REQUERIDA = "CORRECCION_REQUERIDA"
    INFORMACION_ADICIONAL = "INFORMACION_ADICIONAL"


class NotificacionTipo(str, Enum):
    TRAMITE_RECIBIDO = "TRAMITE_RECIBIDO"
    TRAMITE_FIRMADO = "TRAMITE_FIRMADO"
    TRAMITE_ANULADO = "TRAMITE_ANULADO"
    OBSERVACION_CREADA = "OBSERVACION_CREADA"
    OBSERVACION_RESUELTA = "OBSERVACION_RESUELTA"
    DOCUMENTO_REQUIERE_FIRMA = "DOCUMENTO_REQUIERE_FIRMA"
    TRAMITE_REENVIADO = "TRAMITE_REENVIADO"
    RESPUESTA_RECIBIDA = "RESPUESTA_RECIBIDA"


ROL_TRABAJADOR = "TRAB"
ROL_RESPONSABLE = "RESP"
ROL_ADMIN = "ADMIN"


class Area(db.Model):
    __tablename__ = "area"

    id: Mapped[int] = mapped_column(primary_key=True)
    nombre: Mapped[str] = mapped_column(db.String(120), unique=True, nullable=False)
    siglas: Mapped[str] = mapped_column(db.String(20), unique=True, nullable=False)
    activo: Mapped[bool] = mapped_column(default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class Rol(db.Model):
    __tablename__ = "rol"

    id: Mapped[int] = mapped_column(primary_key=True)
    codigo: Mapped[str] = mapped_column(db.String(20), unique=True, nullable=False)
    nombre: Mapped[str] = mapped_column(db.String(80), nullable=False)


class User(UserMixin, db.Model):
    __tablename__ = "user_account"

    id: Mapped[int] = mapped_column(primary_key=True)
    correo: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    nombres: Mapped[str] = mapped_column(db.String(120), nullable=False)
    apellidos: Mapped[str] = mapped_column(db.String(120), nullable=False, default="")
    dni: Mapped[str | None] = mapped_column(db.String(20), unique=True, nullable=True)
    password_hash: Mapped[str] = mapped_column(db.String(255), nullable=False)
    activo: Mapped[bool] = mapped_column(default=True, nullable=False)
    id_area: Mapped[int | None] = mapped_column(ForeignKey("area.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    area = relationship("Area")
    roles = relationship("UsuarioRol", back_populates="usuario", cascade="all, delete-orphan")

    @property
    def full_name(self) -> str:
        return f"{self.nombres} {self.apellidos}".strip()

    @property
    def is_active(self) -> bool:
        return self.activo


class UsuarioRol(db.Model):
    __tablename__ = "usuario_rol"
    __table_args__ = (UniqueConstraint("id_usuario", "id_rol", name="uq_usuario_rol"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    id_usuario: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False, index=True)
    id_rol: Mapped[int] = mapped_column(ForeignKey("rol.id"), nullable=False)

    usuario = relationship("User", back_populates="roles")
    rol = relationship("Rol")


class TipoDocumento(db.Model):
    __tablename__ = "tipo_documento"

    id: Mapped[int] = mapped_column(primary_key=True)
    codigo: Mapped[str] = mapped_column(db.String(30), unique=True, nullable=False)
    nombre: Mapped[str] = mapped_column(db.String(120), nullable=False)
    requiere_firma: Mapped[bool] = mapped_column(default=False, nullable=False)
    requiere_respuesta: Mapped[bool] = mapped_column(default=False, nullable=False)
    activo: Mapped[bool] = mapped_column(default=True, nullable=False)


class Documento(db.Model):
    __tablename__ = "documento"

    id: Mapped[int] = mapped_column(primary_key=True)
    titulo: Mapped[str] = mapped_column(db.String(255), nullable=False)
    id_tipo: Mapped[int | None] = mapped_column(ForeignKey("tipo_documento.id"), nullable=True)
    creado_por: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    version: Mapped[int] = mapped_column(default=1, nullable=False)
    ruta_archivo: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    tipo = relationship("TipoDocumento")


class Tramite(db.Model):
    __tablename__ = "tramite"
    __table_args__ = (
        UniqueConstraint("id_tramite_original", "numero_version", name="uq_tramite_version_chain"),
        Index("ix_tramite_receptor_estado", "id_receptor", "estado"),
        Index("ix_tramite_remitente_envio", "id_remitente", "fecha_envio"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    codigo: Mapped[str] = mapped_column(db.String(30), unique=True, nullable=False)
    estado: Mapped[TramiteEstado] = mapped_column(
        SAEnum(TramiteEstado, name="tramite_estado"),
        nullable=False,
        default=TramiteEstado.ENVIADO,
    )
    id_documento: Mapped[int] = mapped_column(ForeignKey("documento.id"), nullable=False)
    id_remitente: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    id_area_remitente: Mapped[int | None] = mapped_column(ForeignKey("area.id"), nullable=True, index=True)
    id_receptor: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    asunto: Mapped[str] = mapped_column(db.String(255), nullable=False)
    mensaje: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    requiere_firma: Mapped[bool] = mapped_column(default=False, nullable=False)
    requiere_respuesta: Mapped[bool] = mapped_column(default=False, nullable=False)
    fecha_envio: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    fecha_abierto: Mapped[datetime | None] = mapped_column(nullable=True)
    fecha_leido: Mapped[datetime | None] = mapped_column(nullable=True)
    fecha_firmado: Mapped[datetime | None] = mapped_column(nullable=True)
    fecha_respondido: Mapped[datetime | None] = mapped_column(nullable=True)
    fecha_anulado: Mapped[datetime | None] = mapped_column(nullable=True)
    es_reenvio: Mapped[bool] = mapped_column(default=False, nullable=False)
    id_tramite_original: Mapped[int | None] = mapped_column(ForeignKey("tramite.id"), nullable=True, index=True)
    numero_version: Mapped[int] = mapped_column(default=1, nullable=False)
    motivo_reenvio: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    anulado_por: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    motivo_anulacion: Mapped[str | None] = mapped_column(db.Text, nullable=True)

    documento = relationship("Documento")
    remitente = relationship("User", foreign_keys=[id_remitente])
    receptor = relationship("User", foreign_keys=[id_receptor])
    area_remitente = relationship("Area")
    anulado_por_usuario = relationship("User", foreign_keys=[anulado_por])
    tramite_original = relationship("Tramite", remote_side=[id], uselist=False)
    historial = relationship(
        "HistorialTramite",
        back_populates="tramite",
        order_by="HistorialTramite.id",
    )
    observaciones = relationship(
        "Observacion",
        back_populates="tramite",
        foreign_keys="Observacion.id_tramite",
        order_by="Observacion.id",
    )
    firma = relationship("FirmaElectronica", back_populates="tramite", uselist=False)
    respuesta = relationship("RespuestaTramite", back_populates="tramite", uselist=False)


class HistorialTramite(db.Model):
    # Append-only: rows are inserted by services and never updated.
    __tablename__ = "historial_tramite"
    __table_args__ = (Index("ix_historial_tramite_fecha", "id_tramite", "fecha"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    id_tramite: Mapped[int] = mapped_column(ForeignKey("tramite.id"), nullable=False)
    accion: Mapped[HistorialAccion] = mapped_column(
        SAEnum(HistorialAccion, name="historial_accion"),
        nullable=False,
    )
    detalle: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    estado_anterior: Mapped[TramiteEstado | None] = mapped_column(
        SAEnum(TramiteEstado, name="tramite_estado"),
        nullable=True,
    )
    estado_nuevo: Mapped[TramiteEstado | None] = mapped_column(
        SAEnum(TramiteEstado, name="tramite_estado"),
        nullable=True,
    )
    realizado_por: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    datos_adicionales: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    fecha: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    tramite = relationship("Tramite", back_populates="historial")
    usuario = relationship("User")


class Observacion(db.Model):
    __tablename__ = "observacion"
    __table_args__ = (Index("ix_observacion_tramite_resuelta", "id_tramite", "resuelta"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    id_tramite: Mapped[int] = mapped_column(ForeignKey("tramite.id"), nullable=False)
    creado_por: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    tipo: Mapped[ObservacionTipo] = mapped_column(
        SAEnum(ObservacionTipo, name="observacion_tipo"),
        nullable=False,
    )
    descripcion: Mapped[str] = mapped_column(db.Text, nullable=False)
    resuelta: Mapped[bool] = mapped_column(default=False, nullable=False)
    fecha_creacion: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    fecha_resolucion: Mapped[datetime | None] = mapped_column(nullable=True)
    resuelto_por: Mapped[int | None] = mapped_column(ForeignKey("user_account.id"), nullable=True)
    respuesta: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    id_tramite_reenvio: Mapped[int | None] = mapped_column(ForeignKey("tramite.id"), nullable=True)

    tramite = relationship("Tramite", back_populates="observaciones", foreign_keys=[id_tramite])
    tramite_reenvio = relationship("Tramite", foreign_keys=[id_tramite_reenvio])
    creador = relationship("User", foreign_keys=[creado_por])
    resolutor = relationship("User", foreign_keys=[resuelto_por])


class FirmaElectronica(db.Model):
    __tablename__ = "firma_electronica"

    id: Mapped[int] = mapped_column(primary_key=True)
    id_tramite: Mapped[int] = mapped_column(ForeignKey("tramite.id"), unique=True, nullable=False)
    acepta_terminos: Mapped[bool] = mapped_column(nullable=False)
    ip_address: Mapped[str] = mapped_column(db.String(64), nullable=False, default="")
    navegador: Mapped[str] = mapped_column(db.String(60), nullable=False, default="")
    dispositivo: Mapped[str] = mapped_column(db.String(60), nullable=False, default="")
    fecha_firma: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    tramite = relationship("Tramite", back_populates="firma")


class RespuestaTramite(db.Model):
    __tablename__ = "respuesta_tramite"

    id: Mapped[int] = mapped_column(primary_key=True)
    id_tramite: Mapped[int] = mapped_column(ForeignKey("tramite.id"), unique=True, nullable=False)
    texto_respuesta: Mapped[str] = mapped_column(db.String(255), nullable=False, default="Conforme")
    esta_conforme: Mapped[bool] = mapped_column(nullable=False, default=True)
    ip_address: Mapped[str] = mapped_column(db.String(64), nullable=False, default="")
    navegador: Mapped[str] = mapped_column(db.String(60), nullable=False, default="")
    dispositivo: Mapped[str] = mapped_column(db.String(60), nullable=False, default="")
    fecha_respuesta: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    tramite = relationship("Tramite", back_populates="respuesta")


class CodigoVerificacionFirma(db.Model):
    __tablename__ = "codigo_verificacion_firma"
    __table_args__ = (
        Index("ix_codigo_tramite_usuario_usado", "id_tramite", "id_usuario", "usado"),
        Index("ix_codigo_usuario_bloqueo", "id_usuario", "bloqueado_hasta"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    id_tramite: Mapped[int] = mapped_column(ForeignKey("tramite.id"), nullable=False)
    id_usuario: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    codigo: Mapped[str] = mapped_column(db.String(6), nullable=False)
    email_destinatario: Mapped[str] = mapped_column(db.String(255), nullable=False)
    expira_en: Mapped[datetime] = mapped_column(nullable=False)
    usado: Mapped[bool] = mapped_column(default=False, nullable=False)
    intentos_fallidos: Mapped[int] = mapped_column(default=0, nullable=False)
    bloqueado_hasta: Mapped[datetime | None] = mapped_column(nullable=True)
    ip_solicitud: Mapped[str] = mapped_column(db.String(64), nullable=False, default="")
    user_agent: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")
    fecha_creacion: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    fecha_usado: Mapped[datetime | None] = mapped_column(nullable=True)
    # Bumped on every write; updates are compare-and-set against it.
    version: Mapped[int] = mapped_column(default=0, nullable=False)


class Notificacion(db.Model):
    __tablename__ = "notificacion"
    __table_args__ = (Index("ix_notificacion_usuario_leida", "id_usuario", "leida"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    id_usuario: Mapped[int] = mapped_column(ForeignKey("user_account.id"), nullable=False)
    id_tramite: Mapped[int | None] = mapped_column(ForeignKey("tramite.id"), nullable=True)
    tipo: Mapped[NotificacionTipo] = mapped_column(
        SAEnum(NotificacionTipo, name="notificacion_tipo"),
        nullable=False,
    )
    titulo: Mapped[str] = mapped_column(db.String(255), nullable=False)
    mensaje: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    leida: Mapped[bool] = mapped_column(default=False, nullable=False)
    fecha_creacion: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


def seed_demo_data(session) -> None:
    rrhh = Area(nombre="Recursos Humanos", siglas="RRHH")
    secretaria = Area(nombre="Secretaria Academica", siglas="SA")
    session.add_all([rrhh, secretaria])
    session.flush()

    roles = {
        ROL_TRABAJADOR: Rol(codigo=ROL_TRABAJADOR, nombre="Trabajador"),
        ROL_RESPONSABLE: Rol(codigo=ROL_RESPONSABLE, nombre="Responsable de area"),
        ROL_ADMIN: Rol(codigo=ROL_ADMIN, nombre="Administrador"),
    }
    session.add_all(roles.values())
    session.flush()

    admin = User(
        correo="admin@tramites.local",
        nombres="Admin",
        apellidos="Sistema",
        password_hash=generate_password_hash("admin123"),
        id_area=secretaria.id,
    )
    responsable = User(
        correo="resp@tramites.local",
        nombres="Rosa",
        apellidos="Quispe",
        dni="40000001",
        password_hash=generate_password_hash("resp123"),
        id_area=rrhh.id,
    )
    trabajador = User(
        correo="trab@tramites.local",
        nombres="Juan",
        apellidos="Perez",
        dni="40000002",
        password_hash=generate_password_hash("trab123"),
        id_area=rrhh.id,
    )
    trabajador_2 = User(
        correo="trab2@tramites.local",
        nombres="Lucia",
        apellidos="Mendoza",
        dni="40000003",
        password_hash=generate_password_hash("trab123"),
        id_area=secretaria.id,
    )
    inactivo = User(
        correo="inactivo@tramites.local",
        nombres="Pedro",
        apellidos="Salas",
        dni="40000004",
        password_hash=generate_password_hash("inactivo123"),
        activo=False,
        id_area=rrhh.id,
    )
    session.add_all([admin, responsable, trabajador, trabajador_2, inactivo])
    session.flush()

    session.add_all(
        [
            UsuarioRol(id_usuario=admin.id, id_rol=roles[ROL_ADMIN].id),
            UsuarioRol(id_usuario=responsable.id, id_rol=roles[ROL_RESPONSABLE].id),
            UsuarioRol(id_usuario=trabajador.id, id_rol=roles[ROL_TRABAJADOR].id),
            UsuarioRol(id_usuario=trabajador_2.id, id_rol=roles[ROL_TRABAJADOR].id),
            UsuarioRol(id_usuario=inactivo.id, id_rol=roles[ROL_TRABAJADOR].id),
        ]
    )

    contrato = TipoDocumento(
        codigo="CONTRATO",
        nombre="Contrato laboral",
        requiere_firma=True,
        requiere_respuesta=False,
    )
    memorando = TipoDocumento(
        codigo="MEMORANDO",
        nombre="Memorando",
        requiere_firma=False,
        requiere_respuesta=True,
    )
    comunicado = TipoDocumento(
        codigo="COMUNICADO",
        nombre="Comunicado informativo",
        requiere_firma=False,
        requiere_respuesta=False,
    )
    session.add_all([contrato, memorando, comunicado])
    session.flush()

    session.add_all(
        [
            Documento(
                titulo="Contrato 2026 - Juan Perez",
                id_tipo=contrato.id,
                creado_por=responsable.id,
                ruta_archivo="documentos/contrato-2026-jperez.pdf",
            ),
            Documento(
                titulo="Memorando de horario",
                id_tipo=memorando.id,
                creado_por=responsable.id,
                ruta_archivo="documentos/memorando-horario.pdf",
            ),
            Documento(
                titulo="Comunicado de vacaciones",
                id_tipo=comunicado.id,
                creado_por=responsable.id,
                ruta_archivo="documentos/comunicado-vacaciones.pdf",
            ),
            Documento(
                titulo="Contrato 2026 - Juan Perez (corregido)",
                id_tipo=contrato.id,
                creado_por=responsable.id,
                version=2,
                ruta_archivo="documentos/contrato-2026-jperez-v2.pdf",
            ),
        ]
    )
    session.commit()
