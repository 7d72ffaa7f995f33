"""
Unit Tests — IdempotencyGuard
═════════════════════════════

Coverage targets:
  ✅ First claim wins, second claim on a live record loses
  ✅ Record expires after the TTL → next claim wins again
  ✅ release() lets a redelivered message through
  ✅ sweep() removes only expired records
  ✅ Empty / blank ids rejected
  ✅ Concurrent claims on one key → exactly one winner
"""

from __future__ import annotations

import threading

import pytest

from docpipe.idempotency.guard import IdempotencyGuard


@pytest.fixture
def ttl_guard(clock) -> IdempotencyGuard:
    return IdempotencyGuard(ttl_seconds=24 * 3600, clock=clock)


@pytest.mark.unit
class TestClaim:

    def test_claim_then_duplicate_then_expiry(self, ttl_guard, clock):
        assert ttl_guard.try_claim("M") is True
        assert ttl_guard.try_claim("M") is False

        clock.advance(25 * 3600)
        assert ttl_guard.try_claim("M") is True

    def test_record_still_live_just_before_ttl(self, ttl_guard, clock):
        ttl_guard.try_claim("extract-1")
        clock.advance(24 * 3600 - 1)
        assert ttl_guard.try_claim("extract-1") is False
        assert ttl_guard.is_claimed("extract-1") is True

    def test_record_expired_exactly_at_ttl(self, ttl_guard, clock):
        ttl_guard.try_claim("extract-1")
        clock.advance(24 * 3600)
        assert ttl_guard.is_claimed("extract-1") is False

    def test_keys_are_independent(self, ttl_guard):
        assert ttl_guard.try_claim("extract-1") is True
        assert ttl_guard.try_claim("summarize-1") is True
        assert len(ttl_guard) == 2

    def test_release_allows_reclaim(self, ttl_guard):
        ttl_guard.try_claim("result-1")
        ttl_guard.release("result-1")
        assert ttl_guard.is_claimed("result-1") is False
        assert ttl_guard.try_claim("result-1") is True

    def test_release_unknown_key_is_noop(self, ttl_guard):
        ttl_guard.release("never-claimed")
        assert len(ttl_guard) == 0

    @pytest.mark.parametrize("bad", ["", "   "])
    def test_blank_id_rejected(self, ttl_guard, bad):
        with pytest.raises(ValueError):
            ttl_guard.try_claim(bad)

    def test_non_positive_ttl_rejected(self):
        with pytest.raises(ValueError):
            IdempotencyGuard(ttl_seconds=0)


@pytest.mark.unit
class TestSweep:

    def test_sweep_removes_only_expired(self, ttl_guard, clock):
        ttl_guard.try_claim("old")
        clock.advance(23 * 3600)
        ttl_guard.try_claim("new")
        clock.advance(2 * 3600)

        removed = ttl_guard.sweep()

        assert removed == 1
        assert ttl_guard.is_claimed("old") is False
        assert ttl_guard.is_claimed("new") is True

    def test_clear_empties_store(self, ttl_guard):
        ttl_guard.try_claim("a")
        ttl_guard.try_claim("b")
        ttl_guard.clear()
        assert len(ttl_guard) == 0

    def test_sweeper_thread_starts_and_stops(self):
        guard = IdempotencyGuard()
        guard.start_sweeper(interval_seconds=3600)
        guard.stop_sweeper(timeout=1.0)


@pytest.mark.unit
class TestConcurrency:

    def test_single_winner_under_contention(self):
        guard = IdempotencyGuard()
        barrier = threading.Barrier(16)
        wins: list[bool] = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            won = guard.try_claim("extract-shared")
            with lock:
                wins.append(won)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert wins.count(True) == 1
        assert wins.count(False) == 15
