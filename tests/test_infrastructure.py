"""
Unit tests для infrastructure компонентов.
"""

import asyncio
import time

import pytest
from prometheus_client import REGISTRY

from storeaudit.core.errors import CircuitBreakerOpenError
from storeaudit.infrastructure.circuit_breaker import CircuitBreaker, CircuitState
from storeaudit.infrastructure.rate_limiter import RateLimiter, rate_limit
from storeaudit.infrastructure.retry import retry_async


class FakeTime:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


# ═══════════════════════════════════════════════════════
# CIRCUIT BREAKER TESTS
# ═══════════════════════════════════════════════════════

class TestCircuitBreaker:
    """Тесты Circuit Breaker"""

    @pytest.fixture
    def fake_time(self):
        return FakeTime()

    @pytest.fixture
    def breaker(self, fake_time):
        return CircuitBreaker(
            name="test_service",
            failure_threshold=3,
            timeout=1,
            success_threshold=2,
            clock=fake_time,
        )

    @pytest.mark.asyncio
    async def test_closed_state_success(self, breaker):
        """CLOSED состояние: успешные вызовы проходят"""
        async def success_func(value):
            return value

        assert await breaker.call(success_func, "ok") == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_closed_to_open(self, breaker):
        """CLOSED -> OPEN при превышении failure_threshold"""
        async def failing_func():
            raise ConnectionError("Test error")

        for _ in range(breaker.failure_threshold):
            with pytest.raises(ConnectionError):
                await breaker.call(failing_func)

        assert breaker.state == CircuitState.OPEN
        gauge = REGISTRY.get_sample_value("storeaudit_circuit_breaker_state", {"service": "test_service"})
        assert gauge == 1

    @pytest.mark.asyncio
    async def test_open_blocks_requests(self, breaker, fake_time):
        """OPEN состояние блокирует запросы"""
        breaker.state = CircuitState.OPEN
        breaker.last_failure_time = fake_time()
        calls = []

        async def func():
            calls.append(1)

        with pytest.raises(CircuitBreakerOpenError):
            await breaker.call(func)
        assert calls == []

    @pytest.mark.asyncio
    async def test_open_to_half_open_to_closed(self, breaker, fake_time):
        """OPEN -> HALF_OPEN после timeout, затем CLOSED после success_threshold успехов"""
        breaker.state = CircuitState.OPEN
        breaker.last_failure_time = fake_time()
        fake_time.now += 2

        async def func():
            return "success"

        assert await breaker.call(func) == "success"
        assert breaker.state == CircuitState.HALF_OPEN

        await breaker.call(func)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_to_open_on_failure(self, breaker):
        """HALF_OPEN -> OPEN при неудаче"""
        breaker.state = CircuitState.HALF_OPEN

        async def failing_func():
            raise ConnectionError("still down")

        with pytest.raises(ConnectionError):
            await breaker.call(failing_func)
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_success_decays_failure_count(self, breaker):
        async def failing_func():
            raise ConnectionError("blip")

        async def ok():
            return 1

        with pytest.raises(ConnectionError):
            await breaker.call(failing_func)
        await breaker.call(ok)
        assert breaker.failure_count == 0

    def test_get_state(self, breaker):
        state = breaker.get_state()
        assert state["name"] == "test_service"
        assert state["state"] == "closed"
        assert state["failure_count"] == 0


# ═══════════════════════════════════════════════════════
# RETRY TESTS
# ═══════════════════════════════════════════════════════

class TestRetry:

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        attempts = []

        @retry_async(max_attempts=3, base_delay=0, jitter=0)
        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("retry me")
            return "done"

        assert await flaky() == "done"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        attempts = []

        @retry_async(max_attempts=2, base_delay=0, jitter=0)
        async def always_fails():
            attempts.append(1)
            raise ConnectionError("nope")

        with pytest.raises(ConnectionError):
            await always_fails()
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_only_listed_exceptions_retried(self):
        attempts = []

        @retry_async(max_attempts=5, base_delay=0, jitter=0, exceptions=(ConnectionError,))
        async def bad_input():
            attempts.append(1)
            raise ValueError("not transient")

        with pytest.raises(ValueError):
            await bad_input()
        assert len(attempts) == 1

    def test_invalid_max_attempts(self):
        with pytest.raises(ValueError):
            retry_async(max_attempts=0)

    @pytest.mark.asyncio
    async def test_content_fetch_delays_capped(self, monkeypatch):
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        monkeypatch.setattr("storeaudit.infrastructure.retry.asyncio.sleep", fake_sleep)

        @retry_async(max_attempts=5, base_delay=1.0, jitter=0, max_delay=3.0, label="content fetch")
        async def fetch_content():
            raise ConnectionError("provider down")

        with pytest.raises(ConnectionError):
            await fetch_content()
        assert sleeps == [1.0, 2.0, 3.0, 3.0]

    @pytest.mark.asyncio
    async def test_give_up_logged_with_label(self, caplog):
        @retry_async(max_attempts=2, base_delay=0, jitter=0, label="content fetch")
        async def fetch_content():
            raise ConnectionError("provider down")

        with caplog.at_level("WARNING", logger="storeaudit.infrastructure.retry"):
            with pytest.raises(ConnectionError):
                await fetch_content()

        messages = [r.getMessage() for r in caplog.records]
        assert messages[0].startswith("content fetch failed (attempt 1/2)")
        assert messages[-1] == "content fetch gave up after 2 attempts: provider down"


# ═══════════════════════════════════════════════════════
# RATE LIMITER TESTS
# ═══════════════════════════════════════════════════════

class TestRateLimiter:

    @pytest.mark.asyncio
    async def test_burst_within_capacity_is_immediate(self):
        limiter = RateLimiter(rate=5, per_seconds=1.0)
        start = time.monotonic()
        for _ in range(5):
            await limiter.acquire()
        assert time.monotonic() - start < 0.1

    @pytest.mark.asyncio
    async def test_waits_when_bucket_empty(self):
        limiter = RateLimiter(rate=10, per_seconds=1.0)
        for _ in range(10):
            await limiter.acquire()

        start = time.monotonic()
        await limiter.acquire()
        assert time.monotonic() - start >= 0.05

    @pytest.mark.asyncio
    async def test_context_manager_without_limiter(self):
        async with rate_limit(None):
            await asyncio.sleep(0)

    @pytest.mark.asyncio
    async def test_context_manager_consumes_token(self):
        limiter = RateLimiter(rate=2, per_seconds=1.0)
        async with rate_limit(limiter):
            pass
        assert limiter.tokens < 2

    @pytest.mark.asyncio
    async def test_link_checks_spread_after_burst(self):
        limiter = RateLimiter(rate=20, per_seconds=1.0)
        for _ in range(20):
            await limiter.acquire()
        assert limiter.throttled == 0

        start = time.monotonic()
        await asyncio.gather(*(limiter.acquire() for _ in range(2)))
        assert time.monotonic() - start >= 0.09
        assert limiter.throttled == 2

    def test_invalid_rate(self):
        with pytest.raises(ValueError):
            RateLimiter(rate=0, per_seconds=1.0)
