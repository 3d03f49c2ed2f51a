"""Tests for application configuration."""

from pipeyard.config import Settings


def test_settings_defaults() -> None:
    """Test that settings have expected default values."""
    settings = Settings()
    assert settings.api_port == 8000
    assert settings.debug is False
    assert "postgresql" in settings.database_url
    assert settings.operator_ids == []
    assert settings.default_joint_length_m == 12.0


def test_operator_ids_from_environment(monkeypatch) -> None:
    """Test that the operator allow-list is read as a JSON list."""
    monkeypatch.setenv("OPERATOR_IDS", '["op-1", "op-2"]')

    settings = Settings()

    assert settings.operator_ids == ["op-1", "op-2"]
