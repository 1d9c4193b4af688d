"""tramites initial schema

Revision ID: a7d3e9f1c2b4
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "a7d3e9f1c2b4"
down_revision = None
branch_labels = None
depends_on = None


TRAMITE_ESTADO = postgresql.ENUM(
    "ENVIADO",
    "ABIERTO",
    "LEIDO",
    "FIRMADO",
    "RESPONDIDO",
    "ANULADO",
    name="tramite_estado",
    create_type=False,
)
HISTORIAL_ACCION = postgresql.ENUM(
    "CREACION",
    "APERTURA",
    "LECTURA",
    "FIRMA",
    "RESPUESTA",
    "ANULACION",
    "REENVIO",
    "OBSERVACION",
    "OBSERVACION_RESUELTA",
    "REENVIO_POR_OBSERVACION",
    name="historial_accion",
    create_type=False,
)
OBSERVACION_TIPO = postgresql.ENUM(
    "CONSULTA",
    "CORRECCION_REQUERIDA",
    "INFORMACION_ADICIONAL",
    name="observacion_tipo",
    create_type=False,
)
NOTIFICACION_TIPO = postgresql.ENUM(
    "TRAMITE_RECIBIDO",
    "TRAMITE_FIRMADO",
    "TRAMITE_ANULADO",
    "OBSERVACION_CREADA",
    "OBSERVACION_RESUELTA",
    "DOCUMENTO_REQUIERE_FIRMA",
    "TRAMITE_REENVIADO",
    "RESPUESTA_RECIBIDA",
    name="notificacion_tipo",
    create_type=False,
)
ENUM_TYPES = (TRAMITE_ESTADO, HISTORIAL_ACCION, OBSERVACION_TIPO, NOTIFICACION_TIPO)


def upgrade():
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum_type in ENUM_TYPES:
            enum_type.create(bind, checkfirst=True)

    op.create_table(
        "area",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("nombre", sa.String(length=120), nullable=False),
        sa.Column("siglas", sa.String(length=20), nullable=False),
        sa.Column("activo", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("nombre"),
        sa.UniqueConstraint("siglas"),
    )
    op.create_table(
        "rol",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("codigo", sa.String(length=20), nullable=False),
        sa.Column("nombre", sa.String(length=80), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("codigo"),
    )
    op.create_table(
        "user_account",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("correo", sa.String(length=255), nullable=False),
        sa.Column("nombres", sa.String(length=120), nullable=False),
        sa.Column("apellidos", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("dni", sa.String(length=20), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("activo", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("id_area", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["id_area"], ["area.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("correo"),
        sa.UniqueConstraint("dni"),
    )
    op.create_table(
        "usuario_rol",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("id_usuario", sa.Integer(), nullable=False),
        sa.Column("id_rol", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["id_rol"], ["rol.id"]),
        sa.ForeignKeyConstraint(["id_usuario"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("id_usuario", "id_rol", name="uq_usuario_rol"),
    )
    with op.batch_alter_table("usuario_rol", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_usuario_rol_id_usuario"), ["id_usuario"], unique=False)

    op.create_table(
        "tipo_documento",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("codigo", sa.String(length=30), nullable=False),
        sa.Column("nombre", sa.String(length=120), nullable=False),
        sa.Column("requiere_firma", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("requiere_respuesta", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("activo", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("codigo"),
    )
    op.create_table(
        "documento",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("titulo", sa.String(length=255), nullable=False),
        sa.Column("id_tipo", sa.Integer(), nullable=True),
        sa.Column("creado_por", sa.Integer(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("ruta_archivo", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["creado_por"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["id_tipo"], ["tipo_documento.id"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "tramite",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("codigo", sa.String(length=30), nullable=False),
        sa.Column("estado", TRAMITE_ESTADO, nullable=False),
        sa.Column("id_documento", sa.Integer(), nullable=False),
        sa.Column("id_remitente", sa.Integer(), nullable=False),
        sa.Column("id_area_remitente", sa.Integer(), nullable=True),
        sa.Column("id_receptor", sa.Integer(), nullable=False),
        sa.Column("asunto", sa.String(length=255), nullable=False),
        sa.Column("mensaje", sa.Text(), nullable=True),
        sa.Column("requiere_firma", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("requiere_respuesta", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("fecha_envio", sa.DateTime(), nullable=False),
        sa.Column("fecha_abierto", sa.DateTime(), nullable=True),
        sa.Column("fecha_leido", sa.DateTime(), nullable=True),
        sa.Column("fecha_firmado", sa.DateTime(), nullable=True),
        sa.Column("fecha_respondido", sa.DateTime(), nullable=True),
        sa.Column("fecha_anulado", sa.DateTime(), nullable=True),
        sa.Column("es_reenvio", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("id_tramite_original", sa.Integer(), nullable=True),
        sa.Column("numero_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("motivo_reenvio", sa.Text(), nullable=True),
        sa.Column("anulado_por", sa.Integer(), nullable=True),
        sa.Column("motivo_anulacion", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["anulado_por"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["id_area_remitente"], ["area.id"]),
        sa.ForeignKeyConstraint(["id_documento"], ["documento.id"]),
        sa.ForeignKeyConstraint(["id_receptor"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["id_remitente"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["id_tramite_original"], ["tramite.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("codigo"),
        sa.UniqueConstraint("id_tramite_original", "numero_version", name="uq_tramite_version_chain"),
    )
    with op.batch_alter_table("tramite", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_tramite_id_area_remitente"), ["id_area_remitente"], unique=False)
        batch_op.create_index(batch_op.f("ix_tramite_id_tramite_original"), ["id_tramite_original"], unique=False)
    op.create_index("ix_tramite_receptor_estado", "tramite", ["id_receptor", "estado"], unique=False)
    op.create_index("ix_tramite_remitente_envio", "tramite", ["id_remitente", "fecha_envio"], unique=False)

    op.create_table(
        "historial_tramite",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("id_tramite", sa.Integer(), nullable=False),
        sa.Column("accion", HISTORIAL_ACCION, nullable=False),
        sa.Column("detalle", sa.Text(), nullable=False, server_default=""),
        sa.Column("estado_anterior", TRAMITE_ESTADO, nullable=True),
        sa.Column("estado_nuevo", TRAMITE_ESTADO, nullable=True),
        sa.Column("realizado_por", sa.Integer(), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("datos_adicionales", sa.JSON(), nullable=True),
        sa.Column("fecha", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["id_tramite"], ["tramite.id"]),
        sa.ForeignKeyConstraint(["realizado_por"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_historial_tramite_fecha", "historial_tramite", ["id_tramite", "fecha"], unique=False)

    op.create_table(
        "observacion",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("id_tramite", sa.Integer(), nullable=False),
        sa.Column("creado_por", sa.Integer(), nullable=False),
        sa.Column("tipo", OBSERVACION_TIPO, nullable=False),
        sa.Column("descripcion", sa.Text(), nullable=False),
        sa.Column("resuelta", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("fecha_creacion", sa.DateTime(), nullable=False),
        sa.Column("fecha_resolucion", sa.DateTime(), nullable=True),
        sa.Column("resuelto_por", sa.Integer(), nullable=True),
        sa.Column("respuesta", sa.Text(), nullable=True),
        sa.Column("id_tramite_reenvio", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["creado_por"], ["user_account.id"]),
        sa.ForeignKeyConstraint(["id_tramite"], ["tramite.id"]),
        sa.ForeignKeyConstraint(["id_tramite_reenvio"], ["tramite.id"]),
        sa.ForeignKeyConstraint(["resuelto_por"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_observacion_tramite_resuelta",
        "observacion",
        ["id_tramite", "resuelta"],
        unique=False,
    )

    op.create_table(
        "firma_electronica",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("id_tramite", sa.Integer(), nullable=False),
        sa.Column("acepta_terminos", sa.Boolean(), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("navegador", sa.String(length=60), nullable=False, server_default=""),
        sa.Column("dispositivo", sa.String(length=60), nullable=False, server_default=""),
        sa.Column("fecha_firma", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["id_tramite"], ["tramite.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("id_tramite"),
    )
    op.create_table(
        "respuesta_tramite",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("id_tramite", sa.Integer(), nullable=False),
        sa.Column("texto_respuesta", sa.String(length=255), nullable=False, server_default="Conforme"),
        sa.Column("esta_conforme", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("ip_address", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("navegador", sa.String(length=60), nullable=False, server_default=""),
        sa.Column("dispositivo", sa.String(length=60), nullable=False, server_default=""),
        sa.Column("fecha_respuesta", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["id_tramite"], ["tramite.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("id_tramite"),
    )

    op.create_table(
        "codigo_verificacion_firma",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("id_tramite", sa.Integer(), nullable=False),
        sa.Column("id_usuario", sa.Integer(), nullable=False),
        sa.Column("codigo", sa.String(length=6), nullable=False),
        sa.Column("email_destinatario", sa.String(length=255), nullable=False),
        sa.Column("expira_en", sa.DateTime(), nullable=False),
        sa.Column("usado", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("intentos_fallidos", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("bloqueado_hasta", sa.DateTime(), nullable=True),
        sa.Column("ip_solicitud", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("user_agent", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("fecha_creacion", sa.DateTime(), nullable=False),
        sa.Column("fecha_usado", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["id_tramite"], ["tramite.id"]),
        sa.ForeignKeyConstraint(["id_usuario"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_codigo_tramite_usuario_usado",
        "codigo_verificacion_firma",
        ["id_tramite", "id_usuario", "usado"],
        unique=False,
    )
    op.create_index(
        "ix_codigo_usuario_bloqueo",
        "codigo_verificacion_firma",
        ["id_usuario", "bloqueado_hasta"],
        unique=False,
    )

    op.create_table(
        "notificacion",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("id_usuario", sa.Integer(), nullable=False),
        sa.Column("id_tramite", sa.Integer(), nullable=True),
        sa.Column("tipo", NOTIFICACION_TIPO, nullable=False),
        sa.Column("titulo", sa.String(length=255), nullable=False),
        sa.Column("mensaje", sa.Text(), nullable=False, server_default=""),
        sa.Column("leida", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("fecha_creacion", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["id_tramite"], ["tramite.id"]),
        sa.ForeignKeyConstraint(["id_usuario"], ["user_account.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notificacion_usuario_leida", "notificacion", ["id_usuario", "leida"], unique=False)


def downgrade():
    op.drop_index("ix_notificacion_usuario_leida", table_name="notificacion")
    op.drop_table("notificacion")

    op.drop_index("ix_codigo_usuario_bloqueo", table_name="codigo_verificacion_firma")
    op.drop_index("ix_codigo_tramite_usuario_usado", table_name="codigo_verificacion_firma")
    op.drop_table("codigo_verificacion_firma")

    op.drop_table("respuesta_tramite")
    op.drop_table("firma_electronica")

    op.drop_index("ix_observacion_tramite_resuelta", table_name="observacion")
    op.drop_table("observacion")

    op.drop_index("ix_historial_tramite_fecha", table_name="historial_tramite")
    op.drop_table("historial_tramite")

    op.drop_index("ix_tramite_remitente_envio", table_name="tramite")
    op.drop_index("ix_tramite_receptor_estado", table_name="tramite")
    with op.batch_alter_table("tramite", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_tramite_id_tramite_original"))
        batch_op.drop_index(batch_op.f("ix_tramite_id_area_remitente"))
    op.drop_table("tramite")

    op.drop_table("documento")
    op.drop_table("tipo_documento")
    with op.batch_alter_table("usuario_rol", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_usuario_rol_id_usuario"))
    op.drop_table("usuario_rol")
    op.drop_table("user_account")
    op.drop_table("rol")
    op.drop_table("area")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum_type in reversed(ENUM_TYPES):
            enum_type.drop(bind, checkfirst=True)
