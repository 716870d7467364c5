import pytest

from core import config as config_module


def _reset_settings_cache():
    config_module.get_settings.cache_clear()


@pytest.fixture(autouse=True)
def _fresh_settings_after():
    yield
    _reset_settings_cache()


def test_non_local_debug_mode_is_blocked(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("JWT_SECRET", "real-secret")
    _reset_settings_cache()

    with pytest.raises(ValueError, match="debug=true"):
        config_module.get_settings()


def test_non_local_default_secret_is_blocked(monkeypatch):
    monkeypatch.setenv("APP_ENV", "staging")
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.setenv("JWT_SECRET", config_module.DEFAULT_JWT_SECRET)
    _reset_settings_cache()

    with pytest.raises(ValueError, match="default JWT secret"):
        config_module.get_settings()


def test_local_allows_dev_defaults(monkeypatch):
    monkeypatch.setenv("APP_ENV", "local")
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.setenv("JWT_SECRET", config_module.DEFAULT_JWT_SECRET)
    _reset_settings_cache()

    settings = config_module.get_settings()
    assert settings.app_env == "local"


def test_logistics_defaults(monkeypatch):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.delenv("CONSOLIDATION_DEFAULT_MODE", raising=False)
    _reset_settings_cache()

    settings = config_module.get_settings()
    assert settings.lb_per_kg == pytest.approx(2.20462)
    assert settings.volumetric_divisor == 5000.0
    assert settings.consolidation_default_mode == "hybrid"
    assert settings.consolidation_default_time_hours == 48
    assert settings.consolidation_default_quantity_threshold == 50
    assert settings.consolidation_default_notify_percent == 80


def test_logistics_defaults_overridable_from_env(monkeypatch):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("CONSOLIDATION_DEFAULT_QUANTITY_THRESHOLD", "120")
    monkeypatch.setenv("PO_NUMBER_PREFIX", "MPO")
    _reset_settings_cache()

    settings = config_module.get_settings()
    assert settings.consolidation_default_quantity_threshold == 120
    assert settings.po_number_prefix == "MPO"
