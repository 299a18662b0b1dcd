"""Tests for ralphdev.services.healing module."""

import pytest

from ralphdev.context import build_breaker
from ralphdev.lib.circuit_breaker import CircuitBreaker, CircuitBreakerStore, CircuitState
from ralphdev.lib.fs import FileSystem
from ralphdev.services.healing import HealingService


class FakeClock:
    def __init__(self):
        self.now = 5_000

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def healing(tmp_path, clock):
    fs = FileSystem()
    breaker = CircuitBreaker(failure_threshold=2, timeout_ms=60_000, success_threshold=1,
                             store=CircuitBreakerStore(fs, tmp_path), clock=clock)
    return HealingService(breaker, fs, tmp_path)


def log_lines(tmp_path):
    return (tmp_path / "circuit-breaker.log").read_text().splitlines()


class TestAttemptHealing:

    def test_success(self, healing, tmp_path):
        result = healing.attempt_healing("auth.login", lambda: True)
        assert result.success is True
        assert result.attempt_number == 1
        assert result.circuit_state == CircuitState.CLOSED
        assert log_lines(tmp_path)[0].endswith("auth.login attempt 1 SUCCESS")

    def test_false_counts_as_failure(self, healing):
        result = healing.attempt_healing("auth.login", lambda: False)
        assert result.success is False
        assert "healing reported failure" in result.error
        assert healing.breaker.failure_count == 1

    def test_exception_reported_not_raised(self, healing):
        def broken():
            raise RuntimeError("compiler exploded")

        result = healing.attempt_healing("auth.login", broken)
        assert result.success is False
        assert result.error == "compiler exploded"

    def test_attempts_counted_per_task(self, healing):
        healing.attempt_healing("auth.login", lambda: True)
        healing.attempt_healing("auth.logout", lambda: True)
        assert healing.attempt_healing("auth.login", lambda: True).attempt_number == 2

    def test_opens_and_refuses(self, healing, tmp_path):
        healing.attempt_healing("auth.login", lambda: False)
        opened = healing.attempt_healing("auth.login", lambda: False)
        assert opened.circuit_state == CircuitState.OPEN
        assert "Circuit state: CLOSED -> OPEN" in log_lines(tmp_path)

        calls = []
        refused = healing.attempt_healing("auth.login", lambda: calls.append(1) or True)
        assert calls == []
        assert refused.success is False
        assert "retry after 60000ms" in refused.error
        assert refused.to_dict()["circuitState"] == "OPEN"

    def test_recovers_after_cooldown(self, healing, clock):
        healing.attempt_healing("auth.login", lambda: False)
        healing.attempt_healing("auth.login", lambda: False)
        clock.now += 60_000
        result = healing.attempt_healing("auth.login", lambda: True)
        assert result.success is True
        assert result.circuit_state == CircuitState.CLOSED


class TestResetCircuit:

    def test_reset(self, healing, tmp_path):
        healing.attempt_healing("auth.login", lambda: False)
        healing.attempt_healing("auth.login", lambda: False)
        assert healing.reset_circuit() == CircuitState.OPEN
        assert healing.get_circuit_state() == CircuitState.CLOSED
        assert log_lines(tmp_path)[-1].endswith("Circuit reset (was OPEN)")


class TestBuildBreaker:

    def test_uses_config_and_overrides(self, config):
        breaker = build_breaker(config, FileSystem(), failure_threshold=9, success_threshold=None)
        assert breaker.failure_threshold == 9
        assert breaker.success_threshold == config.cb_success_threshold
        assert breaker.store.path == config.state_dir / "circuit-breaker.json"

    def test_context_shares_breaker(self, ctx):
        assert ctx.healing.breaker is ctx.breaker
