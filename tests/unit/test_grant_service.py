"""Unit tests for AccessGrantService.

Tests cover:
- Granting sede/subsede access inside and outside the caller's scope
- Redundant and duplicate grants
- Revocation lookups
- Target user visibility and hierarchy
"""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from municipal_api.core.errors import ConflictError, ForbiddenError, InvalidRequestError, NotFoundError
from municipal_api.core.identity import AccessLevel, RoleLevel
from municipal_api.services.grants import AccessGrantService
from tests.conftest import build_identity

NOW = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _grant(grant_id=1, user_id=42, sede_id=None, subsede_id=None, is_active=True):
    return SimpleNamespace(
        id=grant_id, user_id=user_id, sede_id=sede_id, subsede_id=subsede_id, is_active=is_active,
        granted_by=100, granted_at=NOW, revoked_by=None, revoked_at=None,
    )


def _service(target_level=RoleLevel.MUNICIPAL, access_level=AccessLevel.SUBSEDE):
    users = AsyncMock()
    security = AsyncMock()
    grants = AsyncMock()
    subsede_id = None if access_level in (AccessLevel.SEDE, AccessLevel.TENANT) else 7
    users.get_visible.return_value = SimpleNamespace(
        id=42, sede_id=1, subsede_id=subsede_id, access_level=access_level
    )
    security.list_active_roles_for_user.return_value = [SimpleNamespace(level=target_level)]
    security.get_sede.side_effect = lambda sid: SimpleNamespace(id=sid)
    security.get_subsede.side_effect = lambda sid: SimpleNamespace(id=sid, sede_id=1 if sid < 20 else 2)
    grants.find_active_sede_grant.return_value = None
    grants.find_active_subsede_grant.return_value = None
    grants.add_sede_grant.side_effect = lambda uid, sid, granted_by: _grant(9, uid, sede_id=sid)
    grants.add_subsede_grant.side_effect = lambda uid, sid, granted_by: _grant(10, uid, subsede_id=sid)
    service = AccessGrantService(AsyncMock(), users=users, security=security, grants=grants)
    return service, users, security, grants


def _estatal():
    return build_identity(AccessLevel.SEDE, RoleLevel.ESTATAL, sede_id=1)


def _super():
    return build_identity(AccessLevel.TENANT, RoleLevel.SUPER_ADMIN)


@pytest.mark.unit
class TestGrantSede:
    async def test_super_admin_grants_other_sede(self):
        service, _, _, grants = _service(access_level=AccessLevel.SEDE)

        body = await service.grant_sede(_super(), 42, 2)

        assert body["kind"] == "sede"
        assert body["target_id"] == 2
        grants.commit.assert_awaited_once()

    async def test_sede_outside_scope_is_forbidden(self):
        service, _, _, grants = _service(access_level=AccessLevel.SEDE)

        with pytest.raises(ForbiddenError):
            await service.grant_sede(_estatal(), 42, 2)

        grants.add_sede_grant.assert_not_awaited()

    async def test_own_sede_is_redundant(self):
        service, _, _, grants = _service(access_level=AccessLevel.SEDE)

        with pytest.raises(InvalidRequestError):
            await service.grant_sede(_super(), 42, 1)

    async def test_duplicate_active_grant(self):
        service, _, _, grants = _service(access_level=AccessLevel.SEDE)
        grants.find_active_sede_grant.return_value = _grant(sede_id=2)

        with pytest.raises(ConflictError):
            await service.grant_sede(_super(), 42, 2)

        grants.add_sede_grant.assert_not_awaited()

    async def test_missing_sede(self):
        service, _, security, _ = _service(access_level=AccessLevel.SEDE)
        security.get_sede.side_effect = lambda sid: None

        with pytest.raises(InvalidRequestError):
            await service.grant_sede(_super(), 42, 3)

    @pytest.mark.parametrize("access_level", [AccessLevel.SUBSEDE, AccessLevel.OPERATIVO, AccessLevel.TENANT])
    async def test_only_sede_level_users_take_sede_grants(self, access_level):
        service, _, _, grants = _service(access_level=access_level)

        with pytest.raises(InvalidRequestError, match="SEDE level"):
            await service.grant_sede(_super(), 42, 2)

        grants.add_sede_grant.assert_not_awaited()


@pytest.mark.unit
class TestGrantSubsede:
    async def test_grant_subsede_of_own_sede(self):
        service, _, _, grants = _service()

        body = await service.grant_subsede(_estatal(), 42, 8)

        assert body == {
            "id": 10, "kind": "subsede", "user_id": 42, "target_id": 8, "is_active": True,
            "granted_by": 100, "granted_at": "2024-03-01T00:00:00Z", "revoked_by": None, "revoked_at": None,
        }

    async def test_subsede_of_other_sede_is_forbidden(self):
        service, _, _, grants = _service()

        with pytest.raises(ForbiddenError):
            await service.grant_subsede(_estatal(), 42, 25)

        grants.add_subsede_grant.assert_not_awaited()

    async def test_users_own_subsede_is_redundant(self):
        service, _, _, _ = _service()

        with pytest.raises(InvalidRequestError):
            await service.grant_subsede(_estatal(), 42, 7)

    async def test_sede_user_takes_subsedes_of_own_sede_only(self):
        service, _, _, grants = _service(target_level=RoleLevel.ESTATAL, access_level=AccessLevel.SEDE)

        with pytest.raises(InvalidRequestError, match="does not belong"):
            await service.grant_subsede(_super(), 42, 25)

        body = await service.grant_subsede(_super(), 42, 8)
        assert body["target_id"] == 8
        grants.add_subsede_grant.assert_awaited_once()

    async def test_tenant_user_takes_no_subsede_grants(self):
        service, _, _, grants = _service(target_level=RoleLevel.SUPER_ADMIN, access_level=AccessLevel.TENANT)

        with pytest.raises(InvalidRequestError):
            await service.grant_subsede(_super(), 42, 8)

        grants.add_subsede_grant.assert_not_awaited()


@pytest.mark.unit
class TestTargetUser:
    async def test_invisible_user(self):
        service, users, _, grants = _service()
        users.get_visible.return_value = None

        with pytest.raises(NotFoundError):
            await service.grant_subsede(_estatal(), 42, 8)

    async def test_higher_level_user(self):
        service, _, _, grants = _service(target_level=RoleLevel.SUPER_ADMIN)

        with pytest.raises(ForbiddenError):
            await service.grant_subsede(_estatal(), 42, 8)

        grants.add_subsede_grant.assert_not_awaited()


@pytest.mark.unit
class TestRevoke:
    async def test_revokes_active_grant(self):
        service, _, _, grants = _service()
        grant = _grant(3, 42, sede_id=2)
        grants.get_sede_grant.return_value = grant

        await service.revoke(_super(), 42, "sede", 3)

        grants.deactivate.assert_awaited_once_with(grant, revoked_by=100)
        grants.commit.assert_awaited_once()

    async def test_grant_of_another_user_is_not_found(self):
        service, _, _, grants = _service()
        grants.get_subsede_grant.return_value = _grant(3, 99, subsede_id=8)

        with pytest.raises(NotFoundError):
            await service.revoke(_estatal(), 42, "subsede", 3)

        grants.deactivate.assert_not_awaited()

    async def test_already_revoked_is_not_found(self):
        service, _, _, grants = _service()
        grants.get_sede_grant.return_value = _grant(3, 42, sede_id=2, is_active=False)

        with pytest.raises(NotFoundError):
            await service.revoke(_super(), 42, "sede", 3)

    async def test_bad_kind(self):
        service, _, _, _ = _service()

        with pytest.raises(InvalidRequestError):
            await service.revoke(_super(), 42, "region", 3)


@pytest.mark.unit
class TestList:
    async def test_lists_both_kinds(self):
        service, _, _, grants = _service()
        grants.list_for_user.return_value = ([_grant(1, 42, sede_id=2)], [_grant(2, 42, subsede_id=8)])

        body = await service.list_for_user(_estatal(), 42, include_revoked=True)

        assert [g["target_id"] for g in body["sedes"]] == [2]
        assert [g["target_id"] for g in body["subsedes"]] == [8]
        grants.list_for_user.assert_awaited_once_with(42, include_revoked=True)
