import pytest

from pulsemax.adapters.config.settings_loader import ENV_OVERRIDES, load_settings
from pulsemax.core.domain.settings import SystemSettings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in [*ENV_OVERRIDES, "ADMIN_EMAIL", "PULSEMAX_CONFIG_FILE"]:
        monkeypatch.delenv(name, raising=False)


def test_system_settings_defaults():
    settings = SystemSettings()
    assert settings.log_level == "INFO"
    assert settings.prometheus_url == "http://localhost:8428"
    assert settings.forecaster.seasonal_period == 24
    assert settings.risk_scorer.critical_threshold == 0.70
    assert settings.alerting.dispatch_mode == "await"
    assert settings.alerting.email.smtp_host is None
    assert settings.alerting.kafka.enabled is False


def test_load_settings_from_env(monkeypatch):
    monkeypatch.setenv("PROMETHEUS_URL", "http://vm:8428")
    monkeypatch.setenv("ALERT_WEBHOOK_URL", "https://hooks.example.com/a")
    monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
    monkeypatch.setenv("SMTP_PORT", "2525")
    monkeypatch.setenv("ADMIN_EMAIL", "ops@example.com")

    settings = load_settings(path="non_existent.yaml")

    assert settings.prometheus_url == "http://vm:8428"
    assert settings.alerting.webhook.url == "https://hooks.example.com/a"
    assert settings.alerting.email.smtp_host == "smtp.example.com"
    assert settings.alerting.email.smtp_port == 2525
    assert settings.alerting.email.recipients == ["ops@example.com"]


def test_kafka_servers_enable_kafka(monkeypatch):
    monkeypatch.setenv("KAFKA_BOOTSTRAP_SERVERS", "kafka:9092")

    settings = load_settings(path="non_existent.yaml")

    assert settings.alerting.kafka.enabled is True
    assert settings.alerting.kafka.bootstrap_servers == "kafka:9092"


def test_load_settings_from_file(tmp_path):
    config_file = tmp_path / "test_config.yaml"
    config_file.write_text("""
log_level: DEBUG
forecaster:
  alpha: 0.5
alerting:
  channel_timeout_seconds: 3
  rules_file: "custom_rules.yaml"
    """)

    settings = load_settings(path=str(config_file))

    assert settings.log_level == "DEBUG"
    assert settings.forecaster.alpha == 0.5
    assert settings.alerting.channel_timeout_seconds == 3
    assert settings.alerting.rules_file == "custom_rules.yaml"
    # Defaults preserved
    assert settings.forecaster.beta == 0.1
    assert settings.prometheus_url == "http://localhost:8428"


def test_load_settings_env_overrides_file(tmp_path, monkeypatch):
    config_file = tmp_path / "test_config.yaml"
    config_file.write_text('alerting:\n  email:\n    smtp_host: "file.example.com"\n    smtp_port: 25\n')

    monkeypatch.setenv("SMTP_HOST", "env.example.com")

    settings = load_settings(path=str(config_file))

    # Env var should hold precedence
    assert settings.alerting.email.smtp_host == "env.example.com"
    assert settings.alerting.email.smtp_port == 25


def test_config_file_from_env(tmp_path, monkeypatch):
    config_file = tmp_path / "pulsemax.yaml"
    config_file.write_text("log_level: WARNING\n")
    monkeypatch.setenv("PULSEMAX_CONFIG_FILE", str(config_file))

    assert load_settings().log_level == "WARNING"


def test_corrupt_config_file(tmp_path):
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("log_level: [unclosed\n")

    with pytest.raises(RuntimeError):
        load_settings(path=str(config_file))
