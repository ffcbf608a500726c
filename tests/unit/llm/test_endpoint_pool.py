"""Unit tests for the endpoint pool arbiter."""

import asyncio

import pytest

from bookbatch.core.llm.endpoint_pool import STATUS_BUSY, STATUS_IDLE, EndpointPool, split_urls

A = "http://llm-a:8080"
B = "http://llm-b:8080"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


class TestSplitUrls:
    """Test candidate parsing."""

    def test_comma_separated(self):
        assert split_urls(f" {A}, ,{B} ") == [A, B]

    def test_list(self):
        assert split_urls([A, "", B]) == [A, B]


class TestCheckout:
    """Test endpoint selection."""

    @pytest.mark.asyncio
    async def test_returns_a_candidate(self, clock):
        pool = EndpointPool(clock=clock)
        try:
            for _ in range(5):
                assert await pool.checkout([A, B]) in (A, B)
        finally:
            await pool.close()

    @pytest.mark.asyncio
    async def test_least_used_idle_endpoint_wins(self, clock):
        pool = EndpointPool(clock=clock)
        try:
            first = await pool.checkout([A, B])
            pool.checkin(first)
            second = await pool.checkout([A, B])
            pool.checkin(second)

            assert {first, second} == {A, B}
            records = await pool.snapshot()
            assert records[A].usage_count == records[B].usage_count == 1
            assert records[A].status == records[B].status == STATUS_IDLE
        finally:
            await pool.close()

    @pytest.mark.asyncio
    async def test_padded_candidates_are_returned_stripped(self, clock):
        pool = EndpointPool(clock=clock)
        try:
            url = await pool.checkout([f"  {A} "])
            assert url == A
            pool.checkin(url)
            records = await pool.snapshot()
            assert list(records) == [A]
            assert records[A].status == STATUS_IDLE
        finally:
            await pool.close()

    @pytest.mark.asyncio
    async def test_idle_preferred_over_busy(self, clock):
        pool = EndpointPool(clock=clock)
        try:
            busy = await pool.checkout([A])
            assert await pool.checkout([A, B]) == B
            assert (await pool.snapshot())[busy].status == STATUS_BUSY
        finally:
            await pool.close()

    @pytest.mark.asyncio
    async def test_failed_endpoint_cools_down(self, clock):
        pool = EndpointPool(failure_cooldown=60, clock=clock)
        try:
            url = await pool.checkout([A])
            pool.report_failure(url)

            # A has less usage than B afterwards but is still cooling down
            clock.now = 10
            assert await pool.checkout([A, B]) == B
            pool.checkin(B)
            assert await pool.checkout([A, B]) == B
            pool.checkin(B)

            clock.now = 61
            assert await pool.checkout([A, B]) == A
        finally:
            await pool.close()

    @pytest.mark.asyncio
    async def test_falls_back_when_nothing_is_healthy(self, clock):
        pool = EndpointPool(failure_cooldown=60, clock=clock)
        try:
            pool.report_failure(A)
            pool.report_failure(B)
            assert await pool.checkout([A, B]) in (A, B)
        finally:
            await pool.close()

    @pytest.mark.asyncio
    async def test_stale_checkout_is_released(self, clock):
        """A checkout that never checked in stops counting as busy."""
        pool = EndpointPool(stale_busy=600, clock=clock)
        try:
            await pool.checkout([A])
            clock.now = 650
            await pool.checkout([B])

            clock.now = 700
            assert await pool.checkout([A, B]) == A
        finally:
            await pool.close()

    @pytest.mark.asyncio
    async def test_requires_candidates(self):
        pool = EndpointPool()
        with pytest.raises(ValueError):
            await pool.checkout("")
        await pool.close()

    @pytest.mark.asyncio
    async def test_concurrent_checkouts_spread(self, clock):
        """Simultaneous callers are serialized and never pick the same idle endpoint."""
        pool = EndpointPool(clock=clock)
        try:
            picks = await asyncio.gather(pool.checkout([A, B]), pool.checkout([A, B]))
            assert sorted(picks) == [A, B]
        finally:
            await pool.close()
