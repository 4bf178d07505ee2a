"""
Tests for the per-domain CircuitBreaker guarding the primary backend.
Covers: state transitions, cooldown, domain isolation, and stats tracking.
"""

import pytest

from lexintake.core.circuit_breaker import CircuitBreaker, CircuitState


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(failure_threshold=1, recovery_timeout=30.0, clock=clock)


# ── State transitions ───────────────────────────────────────────


@pytest.mark.asyncio
async def test_initial_state_is_closed(breaker):
    assert await breaker.get_state("permissions") == CircuitState.CLOSED
    assert await breaker.can_execute("permissions") is True


@pytest.mark.asyncio
async def test_single_failure_opens_circuit(breaker):
    await breaker.record_failure("permissions", error_message="connection refused")

    assert await breaker.get_state("permissions") == CircuitState.OPEN
    assert await breaker.can_execute("permissions") is False


@pytest.mark.asyncio
async def test_stays_open_during_cooldown(breaker, clock):
    await breaker.record_failure("permissions")
    clock.advance(29.9)
    assert await breaker.can_execute("permissions") is False


@pytest.mark.asyncio
async def test_half_open_after_cooldown(breaker, clock):
    await breaker.record_failure("permissions")
    clock.advance(30)

    assert await breaker.can_execute("permissions") is True
    assert await breaker.get_state("permissions") == CircuitState.HALF_OPEN


@pytest.mark.asyncio
async def test_probe_success_closes_circuit(breaker, clock):
    await breaker.record_failure("permissions")
    clock.advance(30)
    await breaker.can_execute("permissions")

    await breaker.record_success("permissions")

    assert await breaker.get_state("permissions") == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_probe_failure_reopens_circuit(breaker, clock):
    await breaker.record_failure("permissions")
    clock.advance(30)
    await breaker.can_execute("permissions")

    await breaker.record_failure("permissions", error_message="still down")

    assert await breaker.get_state("permissions") == CircuitState.OPEN
    assert await breaker.can_execute("permissions") is False


@pytest.mark.asyncio
async def test_half_open_admits_a_single_caller(breaker, clock):
    await breaker.record_failure("permissions")
    clock.advance(30)

    assert await breaker.can_execute("permissions") is True
    assert await breaker.can_execute("permissions") is False
    assert await breaker.can_execute("permissions") is False


@pytest.mark.asyncio
async def test_released_trial_call_lets_next_caller_through(breaker, clock):
    await breaker.record_failure("permissions")
    clock.advance(30)
    await breaker.can_execute("permissions")

    await breaker.release_probe("permissions")

    assert await breaker.can_execute("permissions") is True
    assert await breaker.get_state("permissions") == CircuitState.HALF_OPEN


@pytest.mark.asyncio
async def test_abandoned_trial_call_is_replaced_after_timeout(breaker, clock):
    await breaker.record_failure("permissions")
    clock.advance(30)
    await breaker.can_execute("permissions")

    clock.advance(29.9)
    assert await breaker.can_execute("permissions") is False
    clock.advance(0.1)
    assert await breaker.can_execute("permissions") is True

@pytest.mark.asyncio
async def test_threshold_above_one_tolerates_isolated_failures(clock):
    breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=30.0, clock=clock)
    await breaker.record_failure("permissions")
    await breaker.record_failure("permissions")
    assert await breaker.get_state("permissions") == CircuitState.CLOSED


# ── Isolation and reset ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_domains_are_independent(breaker):
    await breaker.record_failure("permissions")
    assert await breaker.can_execute("cases") is True


@pytest.mark.asyncio
async def test_reset_closes_open_circuit(breaker):
    await breaker.record_failure("permissions")
    await breaker.reset("permissions")
    assert await breaker.can_execute("permissions") is True


# ── Stats tracking ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_stats_track_failures_and_successes(breaker, clock):
    await breaker.record_success("permissions")
    await breaker.record_failure("permissions", error_message="timeout")

    stats = await breaker.get_stats("permissions")
    assert stats.total_successes == 1
    assert stats.total_failures == 1
    assert stats.consecutive_failures == 1
    assert stats.last_error_message == "timeout"
    assert stats.last_failure_time == clock.now()
