"""Tests for the feature flag provider cache policy and its sources."""

import pytest

from Localstays.services.entitlements.feature_flags import (
    REVIEW_COMPENSATION_FLAG,
    EnvFlagSource,
    FeatureFlagProvider,
    YamlFlagSource,
)
from tests.conftest import StaticFlagSource


class Ticker:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def ticker():
    return Ticker()


class TestFeatureFlagProvider:
    def test_missing_flag_defaults_to_off_and_is_cached(self, ticker):
        source = StaticFlagSource()
        provider = FeatureFlagProvider(source, ttl_seconds=300, clock=ticker)

        assert provider.review_compensation_enabled() is False
        assert provider.review_compensation_enabled() is False
        assert source.calls == 1

    def test_value_reused_within_ttl_and_refreshed_after(self, ticker):
        source = StaticFlagSource({REVIEW_COMPENSATION_FLAG: True})
        provider = FeatureFlagProvider(source, ttl_seconds=300, clock=ticker)

        assert provider.is_enabled(REVIEW_COMPENSATION_FLAG) is True
        source.flags[REVIEW_COMPENSATION_FLAG] = False
        ticker.now += 299
        assert provider.is_enabled(REVIEW_COMPENSATION_FLAG) is True

        ticker.now += 2
        assert provider.is_enabled(REVIEW_COMPENSATION_FLAG) is False
        assert source.calls == 2

    def test_error_falls_back_to_last_value(self, ticker):
        source = StaticFlagSource({REVIEW_COMPENSATION_FLAG: True})
        provider = FeatureFlagProvider(source, ttl_seconds=60, clock=ticker)
        assert provider.is_enabled(REVIEW_COMPENSATION_FLAG) is True

        source.error = RuntimeError("config store unavailable")
        ticker.now += 120
        assert provider.is_enabled(REVIEW_COMPENSATION_FLAG) is True

    def test_error_without_cache_uses_default_and_retries(self, ticker):
        source = StaticFlagSource({REVIEW_COMPENSATION_FLAG: True})
        source.error = RuntimeError("config store unavailable")
        provider = FeatureFlagProvider(source, clock=ticker)

        assert provider.is_enabled(REVIEW_COMPENSATION_FLAG) is False

        source.error = None
        assert provider.is_enabled(REVIEW_COMPENSATION_FLAG) is True
        assert source.calls == 2

    def test_invalidate_forces_refetch(self, ticker):
        source = StaticFlagSource({REVIEW_COMPENSATION_FLAG: False})
        provider = FeatureFlagProvider(source, clock=ticker)
        provider.is_enabled(REVIEW_COMPENSATION_FLAG)

        source.flags[REVIEW_COMPENSATION_FLAG] = True
        provider.invalidate(REVIEW_COMPENSATION_FLAG)
        assert provider.is_enabled(REVIEW_COMPENSATION_FLAG) is True


class TestFlagSources:
    def test_yaml_source(self, tmp_path):
        path = tmp_path / "flags.yaml"
        path.write_text("flags:\n  review_compensation_enabled: true\n  other: 'no'\n", encoding="utf-8")
        source = YamlFlagSource(str(path))

        assert source.get_flag(REVIEW_COMPENSATION_FLAG) is True
        assert source.get_flag("other") is False
        assert source.get_flag("unknown") is None

    def test_yaml_source_missing_file(self, tmp_path):
        assert YamlFlagSource(str(tmp_path / "absent.yaml")).get_flag(REVIEW_COMPENSATION_FLAG) is None

    def test_env_source(self, monkeypatch):
        monkeypatch.setenv("LS_FLAG_REVIEW_COMPENSATION_ENABLED", "true")
        source = EnvFlagSource()
        assert source.get_flag(REVIEW_COMPENSATION_FLAG) is True

        monkeypatch.delenv("LS_FLAG_REVIEW_COMPENSATION_ENABLED")
        assert source.get_flag(REVIEW_COMPENSATION_FLAG) is None
