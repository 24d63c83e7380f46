"""
ORM models for organizational units, identity/authorization, field operations
and citizen permits.

Importing this package ensures model classes are registered with the Base
metadata for Alembic and runtime usage.
"""

# Re-export commonly used models for convenience and to ensure import side-effects
# register all mapped classes with SQLAlchemy metadata.

from .organization import (  # noqa: F401
    Configuracion,
    Sede,
    Subsede,
    Theme,
)
from .security import (  # noqa: F401
    Permission,
    Role,
    RolePermission,
    User,
    UserRole,
    UserSedeAccess,
    UserSubsedeAccess,
)
from .operations import (  # noqa: F401
    Agente,
    Departamento,
    Multa,
    Patrulla,
    TipoAgente,
)
from .permits import (  # noqa: F401
    MetodoPago,
    PagoEstatus,
    PagoPermiso,
    Permiso,
    PermisoEstatus,
    TipoPermiso,
)
