"""Tests for Courier configuration."""

import pytest
from pydantic import ValidationError

from courier.config import MAX_TIMEOUT_SECONDS, RetryPolicy, Settings


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_defaults(self):
        """Should default to 3 tries, 5s base delay, 300s cap."""
        policy = RetryPolicy()
        assert policy.max_tries == 3
        assert policy.base_delay_seconds == 5.0
        assert policy.max_delay_seconds == 300.0
        assert policy.retry_client_errors is True

    def test_delay_doubles(self):
        """Delay after try k should be base * 2^(k-1)."""
        policy = RetryPolicy(base_delay_seconds=5.0, max_delay_seconds=300.0)
        assert [policy.delay_for(k) for k in range(1, 6)] == [5.0, 10.0, 20.0, 40.0, 80.0]

    def test_delay_capped(self):
        """Delay should never exceed max_delay_seconds."""
        policy = RetryPolicy(base_delay_seconds=5.0, max_delay_seconds=300.0, max_tries=20)
        assert policy.delay_for(7) == 300.0
        assert policy.delay_for(19) == 300.0

    def test_delay_rejects_zero(self):
        """Try numbers start at 1."""
        with pytest.raises(ValueError):
            RetryPolicy().delay_for(0)

    def test_cap_below_base_rejected(self):
        """max_delay_seconds below base_delay_seconds should fail validation."""
        with pytest.raises(ValidationError, match="max_delay_seconds"):
            RetryPolicy(base_delay_seconds=10.0, max_delay_seconds=5.0)

    def test_max_tries_bounds(self):
        """max_tries must be between 1 and 20."""
        with pytest.raises(ValidationError):
            RetryPolicy(max_tries=0)
        with pytest.raises(ValidationError):
            RetryPolicy(max_tries=21)


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        """Should carry the documented defaults."""
        settings = Settings()
        assert settings.database_url.startswith("sqlite+aiosqlite")
        assert settings.delivery_timeout_seconds == 30.0
        assert settings.disable_threshold == 10
        assert settings.max_concurrent_deliveries == 10
        assert settings.retry.max_tries == 3
        assert settings.response_body_max_chars == 1000
        assert settings.stuck_attempt_minutes == 10

    def test_env_override(self, monkeypatch):
        """COURIER_ environment variables should override defaults."""
        monkeypatch.setenv("COURIER_DISABLE_THRESHOLD", "20")
        monkeypatch.setenv("COURIER_REQUIRE_HTTPS", "true")
        settings = Settings()
        assert settings.disable_threshold == 20
        assert settings.require_https is True

    def test_nested_retry_env_override(self, monkeypatch):
        """Nested retry settings should use the __ delimiter."""
        monkeypatch.setenv("COURIER_RETRY__MAX_TRIES", "5")
        monkeypatch.setenv("COURIER_RETRY__BASE_DELAY_SECONDS", "2")
        settings = Settings()
        assert settings.retry.max_tries == 5
        assert settings.retry.base_delay_seconds == 2.0

    def test_disable_threshold_positive(self):
        """disable_threshold must be at least 1."""
        with pytest.raises(ValidationError):
            Settings(disable_threshold=0)

    def test_stuck_window_must_exceed_timeout(self):
        """Stuck-attempt detection must be longer than the HTTP timeout."""
        with pytest.raises(ValidationError, match="stuck_attempt_minutes"):
            Settings(stuck_attempt_minutes=1, delivery_timeout_seconds=120.0)

    @pytest.mark.parametrize("minutes", [1, 3, 5])
    def test_stuck_window_must_exceed_subscription_timeout_cap(self, minutes):
        """A subscription may use a 300s timeout, so the window must exceed 300s."""
        with pytest.raises(ValidationError, match="longest possible delivery timeout"):
            Settings(stuck_attempt_minutes=minutes, delivery_timeout_seconds=5.0)

    def test_stuck_window_above_timeout_cap_accepted(self):
        """Six minutes is the shortest window above the 300s timeout cap."""
        settings = Settings(stuck_attempt_minutes=6, delivery_timeout_seconds=5.0)
        assert settings.stuck_attempt_minutes * 60 > MAX_TIMEOUT_SECONDS

    def test_production_sqlite_warns(self):
        """SQLite in production should warn."""
        with pytest.warns(UserWarning, match="SQLite"):
            Settings(env="production", require_https=True)

    def test_production_postgres_no_warning(self, recwarn):
        """PostgreSQL in production should not warn."""
        Settings(
            env="production",
            database_url="postgresql+asyncpg://courier:secret@db/courier",
            require_https=True,
        )
        assert not [w for w in recwarn if issubclass(w.category, UserWarning)]
