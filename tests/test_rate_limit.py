"""
Tests for the per-action sliding-window rate limiter.
"""
import pytest

from security.rate_limit import RateLimiter, build_rate_limiters


class TestRateLimiter:

    @pytest.fixture
    def limiter(self, clock):
        return RateLimiter(max_attempts=5, window_seconds=15 * 60, block_seconds=60 * 60, clock=clock)

    def test_unknown_identifier_is_allowed(self, limiter):
        decision = limiter.check_limit("user@example.com")
        assert decision.allowed is True
        assert decision.retry_after is None

    def test_check_does_not_consume_attempts(self, limiter):
        for _ in range(20):
            assert limiter.check_limit("user@example.com").allowed
        assert limiter.get_attempt_count("user@example.com") == 0

    def test_attempts_below_limit_are_allowed(self, limiter):
        for _ in range(4):
            limiter.record_attempt("user@example.com")
        assert limiter.check_limit("user@example.com").allowed
        assert limiter.get_attempt_count("user@example.com") == 4

    def test_blocks_after_max_failures_with_full_block_duration(self, limiter):
        for _ in range(5):
            limiter.record_attempt("user@example.com")

        decision = limiter.check_limit("user@example.com")
        assert decision.allowed is False
        assert decision.retry_after == 3600

    def test_retry_after_counts_down_while_blocked(self, limiter, clock):
        for _ in range(5):
            limiter.record_attempt("user@example.com")
        limiter.check_limit("user@example.com")

        clock.advance(600)
        decision = limiter.check_limit("user@example.com")
        assert decision.allowed is False
        assert decision.retry_after == 3000

    def test_block_expires(self, limiter, clock):
        for _ in range(5):
            limiter.record_attempt("user@example.com")
        limiter.check_limit("user@example.com")

        clock.advance(3601)
        assert limiter.check_limit("user@example.com").allowed
        assert limiter.get_attempt_count("user@example.com") == 0

    def test_failures_while_blocked_keep_the_block(self, limiter, clock):
        for _ in range(5):
            limiter.record_attempt("user@example.com")
        limiter.check_limit("user@example.com")

        limiter.record_attempt("user@example.com")
        clock.advance(60)
        assert limiter.check_limit("user@example.com").allowed is False

    def test_success_resets_counter(self, limiter):
        for _ in range(4):
            limiter.record_attempt("user@example.com")
        limiter.record_attempt("user@example.com", success=True)

        assert limiter.get_attempt_count("user@example.com") == 0
        for _ in range(4):
            limiter.record_attempt("user@example.com")
        assert limiter.check_limit("user@example.com").allowed

    def test_success_clears_an_active_block(self, limiter):
        for _ in range(5):
            limiter.record_attempt("user@example.com")
        assert limiter.check_limit("user@example.com").allowed is False

        limiter.record_attempt("user@example.com", success=True)
        assert limiter.check_limit("user@example.com").allowed

    def test_expired_window_starts_fresh(self, limiter, clock):
        for _ in range(4):
            limiter.record_attempt("user@example.com")

        clock.advance(15 * 60 + 1)
        limiter.record_attempt("user@example.com")
        assert limiter.get_attempt_count("user@example.com") == 1

    def test_identifiers_are_independent(self, limiter):
        for _ in range(5):
            limiter.record_attempt("a@example.com")
        assert limiter.check_limit("a@example.com").allowed is False
        assert limiter.check_limit("b@example.com").allowed is True

    def test_sweep_removes_only_expired_unblocked_entries(self, limiter, clock):
        limiter.record_attempt("idle@example.com")
        for _ in range(5):
            limiter.record_attempt("blocked@example.com")
        limiter.check_limit("blocked@example.com")

        clock.advance(15 * 60 + 1)
        assert limiter.sweep() == 1
        assert limiter.get_attempt_count("idle@example.com") == 0
        assert limiter.check_limit("blocked@example.com").allowed is False

        clock.advance(3600)
        assert limiter.sweep() == 1
        assert len(limiter) == 0

    def test_reset(self, limiter):
        limiter.record_attempt("a@example.com")
        limiter.record_attempt("b@example.com")
        limiter.reset("a@example.com")
        assert limiter.get_attempt_count("a@example.com") == 0
        limiter.reset_all()
        assert len(limiter) == 0


class TestRateLimiterPolicies:

    def test_default_policies_per_action(self):
        limiters = build_rate_limiters()

        assert set(limiters) == {"login", "signup", "password_reset"}
        assert (limiters["login"].max_attempts, limiters["login"].window_seconds, limiters["login"].block_seconds) == (5, 900, 3600)
        assert (limiters["signup"].max_attempts, limiters["signup"].window_seconds, limiters["signup"].block_seconds) == (3, 3600, 86400)
        assert (
            limiters["password_reset"].max_attempts,
            limiters["password_reset"].window_seconds,
            limiters["password_reset"].block_seconds,
        ) == (3, 3600, 7200)

    def test_policies_read_from_config(self):
        limiters = build_rate_limiters({"LOGIN_MAX_ATTEMPTS": 2})
        assert limiters["login"].max_attempts == 2
        assert limiters["signup"].max_attempts == 3

    @pytest.mark.parametrize("action,block", [("signup", 86400), ("password_reset", 7200)])
    def test_three_failures_block_sensitive_actions(self, clock, action, block):
        limiter = build_rate_limiters(clock=clock)[action]
        for _ in range(3):
            limiter.record_attempt("10.1.2.3")
        decision = limiter.check_limit("10.1.2.3")
        assert decision.allowed is False
        assert decision.retry_after == block
