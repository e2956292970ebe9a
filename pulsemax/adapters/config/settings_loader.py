import os
from typing import Any

import yaml

from pulsemax.core.domain.settings import SystemSettings

# env var -> path into the settings document
ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "LOG_LEVEL": ("log_level",),
    "PROMETHEUS_URL": ("prometheus_url",),
    "ALERT_WEBHOOK_URL": ("alerting", "webhook", "url"),
    "SMTP_HOST": ("alerting", "email", "smtp_host"),
    "SMTP_PORT": ("alerting", "email", "smtp_port"),
    "ALERT_FROM_EMAIL": ("alerting", "email", "from_address"),
    "KAFKA_BOOTSTRAP_SERVERS": ("alerting", "kafka", "bootstrap_servers"),
    "PULSEMAX_RULES_FILE": ("alerting", "rules_file"),
}


def _set_path(data: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    for key in path[:-1]:
        if not isinstance(data.get(key), dict):
            data[key] = {}
        data = data[key]
    data[path[-1]] = value


def load_settings(path: str | None = None) -> SystemSettings:
    """
    Load system settings from a YAML file.
    Environment variables take precedence over the file, the file over defaults.

    Args:
        path: Path to config.yaml. Defaults to PULSEMAX_CONFIG_FILE env var or "config.yaml".
    """
    if path is None:
        path = os.getenv("PULSEMAX_CONFIG_FILE", "config.yaml")

    config_data: dict[str, Any] = {}

    if os.path.exists(path):
        try:
            with open(path, "r") as f:
                config_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise RuntimeError(f"Failed to load configuration from {path}: {e}")

        if not isinstance(config_data, dict):
            raise RuntimeError(f"Failed to load configuration from {path}: expected a mapping")

    for env_var, settings_path in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            _set_path(config_data, settings_path, value)

    admin_email = os.getenv("ADMIN_EMAIL")
    if admin_email:
        _set_path(config_data, ("alerting", "email", "recipients"), [admin_email])

    # Kafka is opt-in; naming a broker turns it on
    if os.getenv("KAFKA_BOOTSTRAP_SERVERS"):
        _set_path(config_data, ("alerting", "kafka", "enabled"), True)

    return SystemSettings(**config_data)
