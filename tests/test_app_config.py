from apps.avatar_rt.backend.config import (
    AppConfig,
    get_app_config,
    reload_app_config,
    validate_app_settings,
)
from apps.avatar_rt.backend.config.app_config import CacheConfig, TimeoutConfig


def test_default_config_is_valid():
    result = AppConfig().validate()

    assert result["valid"], result["issues"]
    assert result["config_summary"]["response_ttl_s"] == 300


def test_settings_validation_reports_count():
    result = validate_app_settings()

    assert result["valid"], result["issues"]
    assert result["settings_count"] > 0


def test_engine_config_mirrors_app_config():
    config = AppConfig()
    engine_config = config.to_engine_config(llm_timeout_s=2.0)

    assert engine_config.response_cache_ttl_s == config.cache.response_ttl_s
    assert engine_config.speech_cache_ttl_s == config.cache.speech_ttl_s
    assert engine_config.session_idle_threshold_s == config.sessions.idle_threshold_s
    assert engine_config.high_priority_timeout_scale == config.timeouts.high_priority_scale
    assert engine_config.llm_timeout_s == 2.0


def test_invalid_values_are_reported():
    config = AppConfig(
        cache=CacheConfig(response_ttl_s=0, response_prefix_chars=0),
        timeouts=TimeoutConfig(high_priority_scale=1.5),
    )
    result = config.validate()

    assert not result["valid"]
    assert "Response cache TTL must be positive" in result["issues"]
    assert "Response key prefix must be at least 1 character" in result["issues"]
    assert "High priority timeout scale must be in (0, 1]" in result["issues"]


def test_short_prefix_is_a_warning():
    result = AppConfig(cache=CacheConfig(response_prefix_chars=10)).validate()

    assert result["valid"]
    assert any("prefix" in warning for warning in result["warnings"])


def test_reload_replaces_instance():
    before = get_app_config()
    after = reload_app_config()

    assert after is get_app_config()
    assert after is not before
    assert after.to_dict().keys() == {
        "cache",
        "sessions",
        "jobs",
        "timeouts",
        "connections",
        "ai",
        "monitoring",
    }


def test_config_summary_lists_only_live_settings():
    config = AppConfig().to_dict()

    assert set(config["connections"]) == {
        "max_connections",
        "send_queue_size",
        "enable_limits",
        "allowed_origins",
    }
    assert set(config["monitoring"]) == {"enable_tracing"}
