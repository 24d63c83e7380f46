"""Unit tests for IdentityService and token helpers.

Tests cover:
- Missing or inactive principals are unauthenticated
- Role levels, permissions and grants flow into the context
- Token subject round trip and rejection of malformed tokens
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from municipal_api.core.errors import AuthenticationError
from municipal_api.core.identity import AccessLevel, RoleLevel
from municipal_api.core.security import create_access_token, get_token_subject
from municipal_api.services.identity import IdentityService


def _service(user):
    security = AsyncMock()
    grants = AsyncMock()
    security.get_user_by_id.return_value = user
    security.list_active_roles_for_user.return_value = [
        SimpleNamespace(id=1, name="Administrador Municipal", level=RoleLevel.MUNICIPAL),
        SimpleNamespace(id=2, name="Operativo", level=RoleLevel.OPERATIVO),
    ]
    security.permission_codes_for_roles.return_value = {"agentes:read", "users:read"}
    grants.active_grant_ids.return_value = ([], [9])
    return IdentityService(AsyncMock(), security=security, grants=grants), security


def _user(**fields):
    data = dict(id=5, is_active=True, sede_id=1, subsede_id=7, access_level=AccessLevel.SUBSEDE)
    data.update(fields)
    return SimpleNamespace(**data)


@pytest.mark.unit
class TestLoad:
    async def test_builds_context(self):
        service, _ = _service(_user())

        ctx = await service.load(5, tenant_id="municipio-a")

        assert ctx.subject_id == 5
        assert ctx.role_level is RoleLevel.MUNICIPAL
        assert ctx.is_super_admin is False
        assert ctx.roles == frozenset({"Administrador Municipal", "Operativo"})
        assert ctx.permissions == frozenset({"agentes:read", "users:read"})
        assert ctx.subsede_grants == (9,)
        assert ctx.tenant_id == "municipio-a"

    async def test_missing_user(self):
        service, _ = _service(None)

        with pytest.raises(AuthenticationError):
            await service.load(5)

    async def test_inactive_user(self):
        service, security = _service(_user(is_active=False))

        with pytest.raises(AuthenticationError):
            await service.load(5)

        security.list_active_roles_for_user.assert_not_awaited()


@pytest.mark.unit
class TestTokens:
    def test_subject_round_trip(self):
        assert get_token_subject(create_access_token(subject=42)) == 42

    def test_garbage_token(self):
        with pytest.raises(AuthenticationError):
            get_token_subject("not-a-jwt")
