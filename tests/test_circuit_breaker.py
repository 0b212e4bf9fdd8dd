from __future__ import annotations

from backend.circuit_breaker import CircuitBreaker, retry_after


def test_closed_by_default(breaker) -> None:
    assert breaker.should_block() == (False, 0.0)
    assert breaker.tripped is False


def test_remaining_strictly_decreases_then_resets_once(clock) -> None:
    breaker = CircuitBreaker(cooldown_seconds=10, clock=clock)
    breaker.trip()

    seen = []
    for step in (0.0, 2.5, 2.5, 4.0, 0.9):
        clock.advance(step)
        blocked, remaining = breaker.should_block()
        assert blocked is True
        seen.append(remaining)
    assert all(a > b for a, b in zip(seen, seen[1:]))

    clock.advance(0.5)
    assert breaker.should_block() == (False, 0.0)
    assert breaker.tripped is False
    assert breaker.status()["remaining_seconds"] == 0.0
    assert breaker.should_block() == (False, 0.0)


def test_trip_while_open_extends_cooldown(clock) -> None:
    breaker = CircuitBreaker(cooldown_seconds=5, clock=clock)
    breaker.trip()
    clock.advance(4)
    breaker.trip()
    clock.advance(4)
    blocked, remaining = breaker.should_block()
    assert blocked is True
    assert remaining == 1


def test_status_reports_open_breaker(breaker, clock) -> None:
    breaker.trip()
    clock.advance(10)
    status = breaker.status()
    assert status["tripped"] is True
    assert status["remaining_seconds"] == 20
    assert status["cooldown_seconds"] == 30


def test_retry_after_rounds_up() -> None:
    assert retry_after(0.2) == 1
    assert retry_after(3.01) == 4
    assert retry_after(5) == 5
