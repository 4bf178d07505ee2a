"""
Tests for ResilientRepository and DomainSwitch.
Covers: routing by switch, fallback on failure or timeout, circuit opening,
unsupported operations, and single-attempt writes.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from lexintake.core.circuit_breaker import CircuitBreaker, CircuitState
from lexintake.repositories import DomainSwitch, OperationNotSupported, ResilientRepository
from lexintake.schemas.records import UserRecord


# ==================== Fixtures ====================


@pytest.fixture
def primary():
    repo = AsyncMock()
    repo.list_users.return_value = [UserRecord(id=1, institution_id=10, name="from primary")]
    return repo


@pytest.fixture
def fallback():
    repo = AsyncMock()
    repo.list_users.return_value = [UserRecord(id=1, institution_id=10, name="from fallback")]
    repo.get_user.return_value = UserRecord(id=1, institution_id=10, name="from fallback")
    return repo


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(failure_threshold=1, recovery_timeout=30.0, clock=clock)


@pytest.fixture
def resilient(primary, fallback, breaker):
    return ResilientRepository(
        primary=primary,
        fallback=fallback,
        switch=DomainSwitch(domains=["permissions"]),
        breaker=breaker,
        timeout=0.05,
    )


# ── Domain switch ───────────────────────────────────────────────


def test_switch_matches_listed_domains_case_insensitively():
    switch = DomainSwitch(domains=[" Permissions ", "", "cases"])
    assert switch.is_enabled("permissions") is True
    assert switch.is_enabled("CASES") is True
    assert switch.is_enabled("chat") is False


def test_use_direct_db_enables_every_domain():
    assert DomainSwitch(use_direct_db=True).is_enabled("anything") is True


def test_switch_from_settings():
    settings = SimpleNamespace(USE_DIRECT_DB=False, direct_db_domains=["permissions"])
    switch = DomainSwitch.from_settings(settings)
    assert switch.is_enabled("permissions") is True
    assert switch.is_enabled("cases") is False


# ── Routing ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_primary_serves_when_enabled(resilient, primary, fallback, breaker):
    users = await resilient.list_users(10)

    assert users[0].name == "from primary"
    primary.list_users.assert_awaited_once_with(10)
    fallback.list_users.assert_not_awaited()
    assert (await breaker.get_stats("permissions")).total_successes == 1


@pytest.mark.asyncio
async def test_switch_off_goes_straight_to_fallback(primary, fallback, breaker):
    resilient = ResilientRepository(primary, fallback, DomainSwitch(), breaker=breaker)

    users = await resilient.list_users(10)

    assert users[0].name == "from fallback"
    primary.list_users.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_primary_uses_fallback(fallback):
    resilient = ResilientRepository(None, fallback, DomainSwitch(use_direct_db=True))
    assert (await resilient.list_users(10))[0].name == "from fallback"


# ── Failure handling ────────────────────────────────────────────


@pytest.mark.asyncio
async def test_primary_error_falls_back_and_opens_circuit(resilient, primary, fallback, breaker):
    primary.list_users.side_effect = ConnectionError("connection refused")

    users = await resilient.list_users(10)

    assert users[0].name == "from fallback"
    assert await breaker.get_state("permissions") == CircuitState.OPEN


@pytest.mark.asyncio
async def test_open_circuit_skips_primary_until_cooldown(resilient, primary, fallback, clock):
    primary.list_users.side_effect = ConnectionError("connection refused")
    await resilient.list_users(10)

    await resilient.list_users(10)
    assert primary.list_users.await_count == 1
    assert fallback.list_users.await_count == 2

    primary.list_users.side_effect = None
    clock.advance(30)
    users = await resilient.list_users(10)

    assert users[0].name == "from primary"
    assert primary.list_users.await_count == 2


@pytest.mark.asyncio
async def test_concurrent_callers_send_one_primary_call_after_cooldown(resilient, primary, fallback, clock):
    primary.list_users.side_effect = ConnectionError("connection refused")
    await resilient.list_users(10)
    clock.advance(30)

    release = asyncio.Event()

    async def recovering(_institution_id):
        await release.wait()
        return [UserRecord(id=1, institution_id=10, name="from primary")]

    primary.list_users.side_effect = recovering
    trial = asyncio.create_task(resilient.list_users(10))
    await asyncio.sleep(0)
    others = await asyncio.gather(*(resilient.list_users(10) for _ in range(3)))
    release.set()

    assert [users[0].name for users in others] == ["from fallback"] * 3
    assert (await trial)[0].name == "from primary"
    assert primary.list_users.await_count == 2


@pytest.mark.asyncio
async def test_unsupported_operation_does_not_block_recovery(resilient, primary, breaker, clock):
    primary.list_users.side_effect = ConnectionError("connection refused")
    await resilient.list_users(10)
    clock.advance(30)
    primary.list_menus.side_effect = OperationNotSupported("menus live in the tabular base")

    await resilient.list_menus(10)
    primary.list_users.side_effect = None
    users = await resilient.list_users(10)

    assert users[0].name == "from primary"
    assert await breaker.get_state("permissions") == CircuitState.CLOSED

@pytest.mark.asyncio
async def test_primary_timeout_falls_back(resilient, primary, breaker):
    async def slow(_institution_id):
        await asyncio.sleep(1)
        return []

    primary.list_users.side_effect = slow

    users = await resilient.list_users(10)

    assert users[0].name == "from fallback"
    stats = await breaker.get_stats("permissions")
    assert "timed out" in stats.last_error_message


@pytest.mark.asyncio
async def test_unsupported_operation_falls_back_without_opening_circuit(resilient, primary, breaker):
    primary.list_menus.side_effect = OperationNotSupported("menus live in the tabular base")

    await resilient.list_menus(10)

    assert await breaker.get_state("permissions") == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_failed_write_is_attempted_once_per_backend(resilient, primary, fallback):
    primary.create_user_role.side_effect = RuntimeError("deadlock detected")

    await resilient.create_user_role(10, 3, 4)

    primary.create_user_role.assert_awaited_once_with(10, 3, 4)
    fallback.create_user_role.assert_awaited_once_with(10, 3, 4)


# ── Empty results ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_user_missing_from_primary_is_looked_up_in_fallback(resilient, primary, fallback):
    primary.get_user.return_value = None

    user = await resilient.get_user(10, 1)

    assert user.name == "from fallback"
    fallback.get_user.assert_awaited_once_with(10, 1)


@pytest.mark.asyncio
async def test_empty_list_from_primary_is_final(resilient, primary, fallback):
    primary.list_roles.return_value = []

    assert await resilient.list_roles(10) == []
    fallback.list_roles.assert_not_awaited()


@pytest.mark.asyncio
async def test_delete_does_not_reach_fallback(resilient, primary, fallback):
    primary.delete_user.return_value = None

    await resilient.delete_user(5)

    fallback.delete_user.assert_not_awaited()


@pytest.mark.asyncio
async def test_close_releases_both_backends(resilient, primary, fallback):
    await resilient.close()
    primary.close.assert_awaited_once()
    fallback.close.assert_awaited_once()
