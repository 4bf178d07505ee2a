"""
Tests for sysadmin-gated mutations: role permissions, user roles,
institution features and per-user feature settings.
"""

import json

import pytest

from lexintake.core.exceptions import NotFound, Unauthorized, UserNotFound


# ==================== Fixtures ====================


@pytest.fixture
async def institution(seed):
    """Institution 10 with a sysadmin, a regular user and a lawyer role"""
    admin_id = await seed.user(10, legacy_user_id="admin", email="admin@firm.test")
    user_id = await seed.user(10, legacy_user_id="lawyer", email="lawyer@firm.test")
    sysadmin_role = await seed.role(10, "sysadmin")
    lawyer_role = await seed.role(10, "lawyer")
    read_id = await seed.permission(10, "cases.read")
    write_id = await seed.permission(10, "cases.write")
    await seed.user_role(10, admin_id, sysadmin_role)
    return {
        "admin_id": admin_id,
        "user_id": user_id,
        "sysadmin_role": sysadmin_role,
        "lawyer_role": lawyer_role,
        "read_id": read_id,
        "write_id": write_id,
    }


# ── Role permissions ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_update_role_permissions_applies_diff(services, repository, institution):
    role_id = institution["lawyer_role"]

    result = await services.permissions.update_role_permissions(
        10, "admin", role_id, [institution["read_id"], institution["write_id"]]
    )

    assert result == {"added": 2, "removed": 0}
    links = await repository.list_role_permissions(10)
    assert sorted(link.permission_id for link in links if link.role_id == role_id) == [
        institution["read_id"],
        institution["write_id"],
    ]

    result = await services.permissions.update_role_permissions(10, "admin", role_id, [institution["write_id"]])

    assert result == {"added": 0, "removed": 1}
    links = await repository.list_role_permissions(10)
    assert [link.permission_id for link in links if link.role_id == role_id] == [institution["write_id"]]


@pytest.mark.asyncio
async def test_repeating_role_permissions_update_writes_nothing(services, repository, institution):
    permission_ids = [institution["read_id"], institution["read_id"]]
    await services.permissions.update_role_permissions(10, "admin", institution["lawyer_role"], permission_ids)
    repository.reset()

    result = await services.permissions.update_role_permissions(
        10, "admin", institution["lawyer_role"], permission_ids
    )

    assert result == {"added": 0, "removed": 0}
    assert repository.writes == 0


@pytest.mark.asyncio
async def test_role_permissions_change_is_audited(services, repository, institution):
    repository.reset()

    await services.permissions.update_role_permissions(
        10, "admin", institution["lawyer_role"], [institution["read_id"]]
    )

    assert repository.calls["record_audit"] == 1


@pytest.mark.asyncio
async def test_unknown_role_is_rejected(services, repository, institution):
    repository.reset()

    with pytest.raises(NotFound):
        await services.permissions.update_role_permissions(10, "admin", 999, [institution["read_id"]])

    assert repository.writes == 0


@pytest.mark.asyncio
async def test_regular_user_cannot_change_role_permissions(services, repository, institution):
    repository.reset()

    with pytest.raises(Unauthorized):
        await services.permissions.update_role_permissions(
            10, "lawyer", institution["lawyer_role"], [institution["read_id"]]
        )

    assert repository.writes == 0
    assert repository.calls["list_role_permissions"] == 0


@pytest.mark.asyncio
async def test_unresolved_caller_is_reported_as_missing_user(services, institution):
    with pytest.raises(UserNotFound):
        await services.permissions.update_role_permissions(
            10, "ghost", institution["lawyer_role"], [institution["read_id"]]
        )


# ── User roles ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_update_user_roles_grants_sysadmin(services, institution):
    user_id = institution["user_id"]
    assert await services.permissions.is_sysadmin(10, "lawyer") is False

    result = await services.permissions.update_user_roles(
        10, "admin", user_id, [institution["sysadmin_role"], institution["lawyer_role"]]
    )

    assert result == {"added": 2, "removed": 0}
    assert await services.permissions.is_sysadmin(10, "lawyer") is True


@pytest.mark.asyncio
async def test_update_user_roles_invalidates_cached_status(services, institution):
    before = await services.permissions.resolve_status(10, "lawyer")
    assert before.is_sysadmin is False

    await services.permissions.update_user_roles(10, "admin", institution["user_id"], [institution["sysadmin_role"]])

    after = await services.permissions.resolve_status(10, "lawyer")
    assert after.is_sysadmin is True


@pytest.mark.asyncio
async def test_removing_all_roles(services, repository, institution):
    await services.permissions.update_user_roles(10, "admin", institution["user_id"], [institution["lawyer_role"]])

    result = await services.permissions.update_user_roles(10, "admin", institution["user_id"], [])

    assert result == {"added": 0, "removed": 1}
    links = await repository.list_user_roles(10)
    assert all(link.user_id != institution["user_id"] for link in links)


@pytest.mark.asyncio
async def test_regular_user_cannot_change_user_roles(services, repository, institution):
    repository.reset()

    with pytest.raises(Unauthorized):
        await services.permissions.update_user_roles(
            10, "lawyer", institution["admin_id"], [institution["lawyer_role"]]
        )

    assert repository.writes == 0
    # Only the caller's own role lookup ran; the subject's links were never read
    assert repository.calls["list_user_roles"] == 1
    assert repository.calls["get_user"] == 0

@pytest.mark.asyncio
async def test_user_roles_for_user_of_other_institution(services, seed, repository, institution):
    stranger = await seed.user(20, legacy_user_id="stranger")
    repository.reset()

    with pytest.raises(UserNotFound):
        await services.permissions.update_user_roles(10, "admin", stranger, [institution["lawyer_role"]])

    assert repository.writes == 0


@pytest.mark.asyncio
async def test_sysadmin_cannot_target_another_institution(services, repository, institution):
    repository.reset()

    with pytest.raises(Unauthorized):
        await services.permissions.update_user_roles(
            10, "admin", institution["user_id"], [], target_institution_id=20
        )

    assert repository.writes == 0


@pytest.mark.asyncio
async def test_global_admin_manages_any_institution(services, repository, institution):
    repository.reset()

    result = await services.permissions.update_user_roles(
        4, "root", institution["user_id"], [institution["lawyer_role"]], target_institution_id=10
    )

    assert result == {"added": 1, "removed": 0}
    audit_calls = repository.calls["record_audit"]
    assert audit_calls == 1


# ── Institution features ────────────────────────────────────────


@pytest.mark.asyncio
async def test_update_institution_features(services, institution):
    changed = await services.permissions.update_institution_features(
        10, "admin", None, {"chat": False, "calendar": False}
    )

    assert changed == 2
    status = await services.permissions.resolve_status(10, "admin")
    # The sysadmin still sees everything regardless of institution toggles
    assert "/chat" in status.enabled_pages
    regular = await services.permissions.resolve_status(10, "lawyer")
    assert "/chat" not in regular.enabled_pages


@pytest.mark.asyncio
async def test_repeating_feature_update_writes_nothing(services, repository, institution):
    await services.permissions.update_institution_features(10, "admin", None, {"chat": False})
    repository.reset()

    changed = await services.permissions.update_institution_features(10, "admin", None, {"chat": False})

    assert changed == 0
    assert repository.writes == 0


@pytest.mark.asyncio
async def test_regular_user_cannot_change_institution_features(services, repository, institution):
    repository.reset()

    with pytest.raises(Unauthorized):
        await services.permissions.update_institution_features(10, "lawyer", None, {"chat": False})

    assert repository.writes == 0
    assert repository.calls["list_menus"] == 0


@pytest.mark.asyncio
async def test_listing_features_of_other_institution_needs_global_admin(services, institution):
    with pytest.raises(Unauthorized):
        await services.permissions.list_institution_features(10, target_institution_id=20)

    features = await services.permissions.list_institution_features(4, target_institution_id=20)
    assert len(features) > 0


# ── Per-user feature settings ───────────────────────────────────


@pytest.mark.asyncio
async def test_admin_updates_user_feature_settings(services, repository, institution):
    repository.reset()

    settings = await services.permissions.update_user_feature_settings(
        10, "admin", institution["user_id"], {"advanced_reports": True}
    )

    assert {setting.key: setting.is_enabled for setting in settings}["advanced_reports"] is True
    assert repository.calls["record_audit"] == 1
    status = await services.permissions.resolve_status(10, "lawyer")
    assert "/reports/advanced" in status.enabled_pages


@pytest.mark.asyncio
async def test_office_admin_may_manage_user_features(services, seed, institution):
    await seed.user(10, legacy_user_id="office", is_office_admin=True)

    settings = await services.permissions.get_user_feature_settings(10, "office", institution["user_id"])

    assert len(settings) > 0


@pytest.mark.asyncio
async def test_regular_user_cannot_read_user_features(services, institution):
    with pytest.raises(Unauthorized):
        await services.permissions.get_user_feature_settings(10, "lawyer", institution["admin_id"])


@pytest.mark.asyncio
async def test_global_admin_reaches_users_of_any_institution(services, seed):
    user_id = await seed.user(20, legacy_user_id="far-away")

    settings = await services.permissions.update_user_feature_settings(4, "root", user_id, {"calendar": True})

    assert {setting.key: setting.is_enabled for setting in settings}["calendar"] is True
    keys = await services.features.get_user_enabled_feature_keys(user_id, 20)
    assert keys == {"calendar"}


@pytest.mark.asyncio
async def test_audit_summary_is_json(services, repository, institution, monkeypatch):
    recorded = []

    async def capture(institution_id, acted_by_user_id, target_type, target_id, change_summary):
        recorded.append((institution_id, acted_by_user_id, target_type, target_id, json.loads(change_summary)))

    monkeypatch.setattr(services.permissions.repository, "record_audit", capture)

    await services.permissions.update_user_roles(10, "admin", institution["user_id"], [institution["lawyer_role"]])

    assert recorded == [
        (
            10,
            institution["admin_id"],
            "user_roles",
            institution["user_id"],
            {"added": 1, "removed": 0, "role_ids": [institution["lawyer_role"]]},
        )
    ]
