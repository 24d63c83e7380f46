"""Initial schema for organizational units, security and municipal operations.

- themes, sedes, subsedes, configuraciones
- users, roles, permissions, user_roles, role_permissions
- user_sede_access, user_subsede_access
- tipos_agente, departamentos, agentes, patrullas, multas
- tipos_permiso, permisos, pagos_permisos
"""

from typing import List, Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "4d2c8e7a1b90"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ACCESS_LEVEL = sa.Enum("TENANT", "SEDE", "SUBSEDE", "OPERATIVO", name="access_level")
ROLE_LEVEL = sa.Enum("SUPER_ADMIN", "ESTATAL", "MUNICIPAL", "OPERATIVO", name="role_level")
PERMISO_ESTATUS = sa.Enum(
    "SOLICITADO", "EN_REVISION", "APROBADO", "RECHAZADO", "VENCIDO", "CANCELADO",
    name="permiso_estatus",
)
METODO_PAGO = sa.Enum("EFECTIVO", "TARJETA", "TRANSFERENCIA", name="metodo_pago")
PAGO_ESTATUS = sa.Enum("PAGADO", "CANCELADO", "REEMBOLSADO", name="pago_estatus")


def _pk() -> sa.Column:
    return sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True)


def _timestamps() -> List[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def _active() -> sa.Column:
    return sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False)


def _soft_delete() -> List[sa.Column]:
    return [
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.BigInteger(), nullable=True),
    ]


def _scoped() -> List:
    return [
        sa.Column("sede_id", sa.BigInteger(), nullable=False),
        sa.Column("subsede_id", sa.BigInteger(), nullable=True),
        sa.ForeignKeyConstraint(["sede_id"], ["sedes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["subsede_id"], ["subsedes.id"], ondelete="SET NULL"),
    ]


def _scoped_indexes(table: str) -> None:
    op.create_index(f"ix_{table}_sede_id", table, ["sede_id"])
    op.create_index(f"ix_{table}_subsede_id", table, ["subsede_id"])
    op.create_index(f"ix_{table}_deleted_at", table, ["deleted_at"])


def upgrade() -> None:
    # Organization
    op.create_table(
        "themes",
        _pk(),
        sa.Column("name", sa.Text(), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("primary_color", sa.Text(), nullable=False),
        sa.Column("secondary_color", sa.Text(), nullable=False),
        sa.Column("dark_mode", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("is_default", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "sedes",
        _pk(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("code", sa.Text(), nullable=False, unique=True),
        sa.Column("legal_name", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("phone_number", sa.Text(), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("city", sa.Text(), nullable=True),
        sa.Column("state", sa.Text(), nullable=True),
        sa.Column("theme_id", sa.BigInteger(), nullable=True),
        _active(),
        *_soft_delete(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["theme_id"], ["themes.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_sedes_deleted_at", "sedes", ["deleted_at"])

    op.create_table(
        "subsedes",
        _pk(),
        sa.Column("sede_id", sa.BigInteger(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("code", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("population", sa.Integer(), nullable=True),
        sa.Column("municipality_code", sa.Text(), nullable=True),
        _active(),
        *_soft_delete(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["sede_id"], ["sedes.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("sede_id", "code", name="uq_subsedes_sede_code"),
    )
    op.create_index("ix_subsedes_sede_id", "subsedes", ["sede_id"])
    op.create_index("ix_subsedes_deleted_at", "subsedes", ["deleted_at"])

    op.create_table(
        "configuraciones",
        _pk(),
        *_scoped(),
        sa.Column("nombre_cliente", sa.Text(), nullable=False),
        sa.Column("ciudad", sa.Text(), nullable=True),
        sa.Column("titular", sa.Text(), nullable=True),
        sa.Column("salario_minimo", sa.Numeric(12, 2), nullable=True),
        sa.Column("valor_uma", sa.Numeric(12, 2), nullable=True),
        sa.Column("theme_id", sa.BigInteger(), nullable=True),
        _active(),
        *_soft_delete(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["theme_id"], ["themes.id"], ondelete="SET NULL"),
    )
    _scoped_indexes("configuraciones")

    # Security
    op.create_table(
        "users",
        _pk(),
        *_scoped(),
        sa.Column("email", sa.Text(), nullable=False, unique=True),
        sa.Column("username", sa.Text(), nullable=False, unique=True),
        sa.Column("hashed_password", sa.Text(), nullable=False),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("last_name", sa.Text(), nullable=False),
        sa.Column("phone_number", sa.Text(), nullable=True),
        sa.Column("document_number", sa.Text(), nullable=True, unique=True),
        sa.Column("access_level", ACCESS_LEVEL, nullable=False),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        _active(),
        *_soft_delete(),
        *_timestamps(),
    )
    _scoped_indexes("users")

    op.create_table(
        "roles",
        _pk(),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("level", ROLE_LEVEL, nullable=False),
        sa.Column("is_global", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("sede_id", sa.BigInteger(), nullable=True),
        sa.Column("subsede_id", sa.BigInteger(), nullable=True),
        _active(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["sede_id"], ["sedes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["subsede_id"], ["subsedes.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("name", "sede_id", "subsede_id", name="uq_roles_name_scope"),
    )
    op.create_index("ix_roles_sede_id", "roles", ["sede_id"])
    op.create_index("ix_roles_subsede_id", "roles", ["subsede_id"])

    op.create_table(
        "permissions",
        _pk(),
        sa.Column("resource", sa.Text(), nullable=False),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _active(),
        *_timestamps(),
        sa.UniqueConstraint("resource", "action", name="uq_permissions_resource_action"),
    )

    op.create_table(
        "user_roles",
        _pk(),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("role_id", sa.BigInteger(), nullable=False),
        sa.Column("assigned_by", sa.BigInteger(), nullable=True),
        _active(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_user_roles_user_id", "user_roles", ["user_id"])
    op.create_index("ix_user_roles_role_id", "user_roles", ["role_id"])

    op.create_table(
        "role_permissions",
        _pk(),
        sa.Column("role_id", sa.BigInteger(), nullable=False),
        sa.Column("permission_id", sa.BigInteger(), nullable=False),
        sa.Column("granted_by", sa.BigInteger(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_role_permission"),
    )

    for table, target in (("user_sede_access", "sede"), ("user_subsede_access", "subsede")):
        op.create_table(
            table,
            _pk(),
            sa.Column("user_id", sa.BigInteger(), nullable=False),
            sa.Column(f"{target}_id", sa.BigInteger(), nullable=False),
            _active(),
            sa.Column("granted_by", sa.BigInteger(), nullable=True),
            sa.Column("granted_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
            sa.Column("revoked_by", sa.BigInteger(), nullable=True),
            sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint([f"{target}_id"], [f"{target}s.id"], ondelete="CASCADE"),
        )
        op.create_index(f"ix_{table}_user_id", table, ["user_id"])

    # Operations
    op.create_table(
        "tipos_agente",
        _pk(),
        *_scoped(),
        sa.Column("tipo", sa.Text(), nullable=False),
        _active(),
        *_soft_delete(),
        *_timestamps(),
    )
    _scoped_indexes("tipos_agente")

    op.create_table(
        "departamentos",
        _pk(),
        *_scoped(),
        sa.Column("nombre", sa.Text(), nullable=False),
        sa.Column("descripcion", sa.Text(), nullable=True),
        _active(),
        *_soft_delete(),
        *_timestamps(),
    )
    _scoped_indexes("departamentos")

    op.create_table(
        "agentes",
        _pk(),
        *_scoped(),
        sa.Column("nombres", sa.Text(), nullable=False),
        sa.Column("apellido_paterno", sa.Text(), nullable=False),
        sa.Column("apellido_materno", sa.Text(), nullable=True),
        sa.Column("tipo_id", sa.BigInteger(), nullable=False),
        sa.Column("cargo", sa.Text(), nullable=True),
        sa.Column("num_plantilla", sa.Text(), nullable=False),
        sa.Column("num_empleado_biometrico", sa.Text(), nullable=True),
        sa.Column("foto", sa.Text(), nullable=True),
        sa.Column("whatsapp", sa.Text(), nullable=True),
        sa.Column("correo", sa.Text(), nullable=True),
        sa.Column("departamento_id", sa.BigInteger(), nullable=True),
        _active(),
        *_soft_delete(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tipo_id"], ["tipos_agente.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["departamento_id"], ["departamentos.id"], ondelete="SET NULL"),
    )
    _scoped_indexes("agentes")

    op.create_table(
        "patrullas",
        _pk(),
        *_scoped(),
        sa.Column("agente_id", sa.BigInteger(), nullable=True),
        sa.Column("marca", sa.Text(), nullable=False),
        sa.Column("modelo", sa.Text(), nullable=False),
        sa.Column("placa", sa.Text(), nullable=False),
        sa.Column("num_patrulla", sa.Text(), nullable=False),
        sa.Column("serie", sa.Text(), nullable=True),
        _active(),
        *_soft_delete(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["agente_id"], ["agentes.id"], ondelete="SET NULL"),
    )
    _scoped_indexes("patrullas")

    op.create_table(
        "multas",
        _pk(),
        *_scoped(),
        sa.Column("nombre", sa.Text(), nullable=False),
        sa.Column("codigo", sa.Text(), nullable=False),
        sa.Column("descripcion", sa.Text(), nullable=True),
        sa.Column("departamento_id", sa.BigInteger(), nullable=True),
        sa.Column("costo", sa.Numeric(12, 2), nullable=True),
        sa.Column("num_umas", sa.Numeric(10, 2), nullable=True),
        sa.Column("num_salarios", sa.Numeric(10, 2), nullable=True),
        sa.Column("recargo", sa.Numeric(12, 2), nullable=True),
        _active(),
        *_soft_delete(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["departamento_id"], ["departamentos.id"], ondelete="SET NULL"),
    )
    _scoped_indexes("multas")

    # Permits
    op.create_table(
        "tipos_permiso",
        _pk(),
        *_scoped(),
        sa.Column("nombre", sa.Text(), nullable=False),
        sa.Column("descripcion", sa.Text(), nullable=True),
        sa.Column("campos_personalizados", postgresql.JSONB(), nullable=True),
        sa.Column("costo_base", sa.Numeric(12, 2), nullable=True),
        sa.Column("num_umas_base", sa.Numeric(10, 2), nullable=True),
        sa.Column("num_salarios_base", sa.Numeric(10, 2), nullable=True),
        sa.Column("vigencia_defecto", sa.Integer(), server_default=sa.text("30"), nullable=False),
        _active(),
        *_soft_delete(),
        *_timestamps(),
    )
    _scoped_indexes("tipos_permiso")

    op.create_table(
        "permisos",
        _pk(),
        *_scoped(),
        sa.Column("tipo_permiso_id", sa.BigInteger(), nullable=False),
        sa.Column("folio", sa.Text(), nullable=False, unique=True),
        sa.Column("descripcion", sa.Text(), nullable=True),
        sa.Column("nombre_ciudadano", sa.Text(), nullable=False),
        sa.Column("documento_ciudadano", sa.Text(), nullable=False),
        sa.Column("domicilio_ciudadano", sa.Text(), nullable=True),
        sa.Column("telefono_ciudadano", sa.Text(), nullable=True),
        sa.Column("email_ciudadano", sa.Text(), nullable=True),
        sa.Column("costo", sa.Numeric(12, 2), nullable=True),
        sa.Column("fecha_emision", sa.DateTime(timezone=True), nullable=False),
        sa.Column("fecha_vencimiento", sa.DateTime(timezone=True), nullable=False),
        sa.Column("vigencia_dias", sa.Integer(), nullable=False),
        sa.Column("estatus", PERMISO_ESTATUS, nullable=False),
        sa.Column("fecha_solicitud", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("fecha_aprobacion", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fecha_rechazo", sa.DateTime(timezone=True), nullable=True),
        sa.Column("observaciones", sa.Text(), nullable=True),
        sa.Column("motivo_rechazo", sa.Text(), nullable=True),
        _active(),
        *_soft_delete(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tipo_permiso_id"], ["tipos_permiso.id"], ondelete="RESTRICT"),
    )
    _scoped_indexes("permisos")
    op.create_index("ix_permisos_documento_ciudadano", "permisos", ["documento_ciudadano"])

    op.create_table(
        "pagos_permisos",
        _pk(),
        *_scoped(),
        sa.Column("permiso_id", sa.BigInteger(), nullable=False),
        sa.Column("nombre_ciudadano", sa.Text(), nullable=False),
        sa.Column("documento_ciudadano", sa.Text(), nullable=False),
        sa.Column("costo_base", sa.Numeric(12, 2), nullable=False),
        sa.Column("descuento_pct", sa.Numeric(5, 2), server_default=sa.text("0"), nullable=False),
        sa.Column("total", sa.Numeric(12, 2), nullable=False),
        sa.Column("metodo_pago", METODO_PAGO, nullable=False),
        sa.Column("referencia_pago", sa.Text(), nullable=True),
        sa.Column("estatus", PAGO_ESTATUS, nullable=False),
        sa.Column("fecha_pago", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("usuario_cobro_id", sa.BigInteger(), nullable=True),
        sa.Column("autorizado_por", sa.BigInteger(), nullable=True),
        sa.Column("es_reembolso", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("pago_original_id", sa.BigInteger(), nullable=True),
        sa.Column("observaciones", sa.Text(), nullable=True),
        _active(),
        *_soft_delete(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["permiso_id"], ["permisos.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["usuario_cobro_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["pago_original_id"], ["pagos_permisos.id"], ondelete="SET NULL"),
    )
    _scoped_indexes("pagos_permisos")
    op.create_index("ix_pagos_permisos_permiso_id", "pagos_permisos", ["permiso_id"])


def downgrade() -> None:
    # Drop tables in reverse dependency order
    for table in (
        "pagos_permisos",
        "permisos",
        "tipos_permiso",
        "multas",
        "patrullas",
        "agentes",
        "departamentos",
        "tipos_agente",
        "user_subsede_access",
        "user_sede_access",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
        "configuraciones",
        "subsedes",
        "sedes",
        "themes",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum_type in (PAGO_ESTATUS, METODO_PAGO, PERMISO_ESTATUS, ROLE_LEVEL, ACCESS_LEVEL):
        enum_type.drop(bind, checkfirst=True)
