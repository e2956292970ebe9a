from unittest.mock import AsyncMock, MagicMock

import pytest

from pulsemax.adapters.rules.memory_store import InMemoryRuleStore
from pulsemax.adapters.rules.yaml_store import YamlRuleStore
from pulsemax.adapters.sinks.dashboard import DashboardSink
from pulsemax.adapters.sinks.kafka import KafkaAlertSink
from pulsemax.core.domain.monitor import Monitor, MonitorResult
from pulsemax.core.domain.settings import SystemSettings
from pulsemax.main import build_services, build_sinks, load_monitors, run_monitors


def test_build_services_defaults():
    services = build_services(SystemSettings())

    assert isinstance(services.rule_store, InMemoryRuleStore)
    assert isinstance(services.dashboard, DashboardSink)
    assert services.engine.rule_store is services.rule_store
    assert services.monitoring.engine is services.engine
    assert services.source.read_url == "http://localhost:8428"


def test_build_services_with_rules_file(tmp_path):
    settings = SystemSettings(alerting={"rules_file": str(tmp_path / "rules.yaml")})
    assert isinstance(build_services(settings).rule_store, YamlRuleStore)


def test_build_sinks_channels():
    sinks, dashboard = build_sinks(SystemSettings())
    assert [s.channel for s in sinks] == ["dashboard", "email", "sms"]
    assert dashboard is sinks[0]

    settings = SystemSettings(alerting={
        "webhook": {"url": "https://hooks.example.com"},
        "kafka": {"enabled": True},
    })
    sinks, dashboard = build_sinks(settings)
    assert [s.channel for s in sinks] == ["dashboard", "email", "webhook", "sms"]
    assert isinstance(sinks[0], KafkaAlertSink)
    assert dashboard is None


def test_load_monitors(tmp_path):
    path = tmp_path / "monitors.yaml"
    path.write_text("""
monitors:
  - name: sessions
    query: session_volume
    supply_query: available_tutors
    horizon_steps: 12
  - name: ratings
    query: avg_rating
    enabled: false
""")

    monitors = load_monitors(path)

    assert [m.name for m in monitors] == ["sessions", "ratings"]
    assert monitors[0].horizon_steps == 12
    assert load_monitors(tmp_path / "missing.yaml") == []


@pytest.mark.asyncio
async def test_run_monitors_continues_after_failure():
    services = MagicMock()
    ok = MonitorResult(monitor_name="b")
    services.monitoring.run_monitor = AsyncMock(side_effect=[RuntimeError("boom"), ok])

    monitors = [
        Monitor(name="a", query="a"),
        Monitor(name="skipped", query="s", enabled=False),
        Monitor(name="b", query="b"),
    ]
    results = await run_monitors(services, monitors)

    assert results == [ok]
    assert services.monitoring.run_monitor.await_count == 2
