"""
Tests for rule store adapters.
"""
from datetime import datetime, timezone

import pytest
import yaml

from pulsemax.adapters.rules.memory_store import InMemoryRuleStore
from pulsemax.adapters.rules.yaml_store import YamlRuleStore
from pulsemax.core.domain.alert import AlertRule, RuleCondition

pytestmark = pytest.mark.unit

RULES_YAML = """
rules:
  - id: high-volume
    name: High session volume
    severity: high
    channels: [dashboard, email]
    cooldown_minutes: 30
    conditions:
      - {metric: session_volume, operator: gt, threshold: 100}
  - id: broken
    severity: apocalyptic
  - id: low-tutors
    conditions:
      - {metric: tutors, operator: lt, threshold: 10}
"""


@pytest.fixture
def rules_file(tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text(RULES_YAML)
    return path


@pytest.mark.asyncio
async def test_yaml_store_loads_valid_rules(rules_file):
    store = YamlRuleStore(rules_file)

    rules = await store.list_rules()

    assert [r.id for r in rules] == ["high-volume", "low-tutors"]
    rule = await store.get_rule("high-volume")
    assert rule.severity == "high"
    assert rule.cooldown_minutes == 30
    assert rule.conditions[0].operator == "gt"

    low = await store.get_rule("low-tutors")
    assert low.severity == "medium"
    assert low.channels == ["dashboard"]
    assert low.cooldown_minutes == 15


@pytest.mark.asyncio
async def test_yaml_store_missing_file(tmp_path):
    store = YamlRuleStore(tmp_path / "missing.yaml")
    assert await store.list_rules() == []
    assert await store.get_rule("anything") is None


@pytest.mark.asyncio
async def test_yaml_store_save_and_delete(rules_file):
    store = YamlRuleStore(rules_file)
    await store.save_rule(AlertRule(
        id="error-rate",
        conditions=[RuleCondition(metric="errors", operator="gte", threshold=5)],
    ))

    saved = yaml.safe_load(rules_file.read_text())
    assert [r["id"] for r in saved["rules"]] == ["high-volume", "low-tutors", "error-rate"]

    assert await store.delete_rule("high-volume") is True
    assert await store.delete_rule("high-volume") is False

    reloaded = YamlRuleStore(rules_file)
    assert [r.id for r in await reloaded.list_rules()] == ["low-tutors", "error-rate"]


@pytest.mark.asyncio
async def test_yaml_store_last_fired(rules_file):
    store = YamlRuleStore(rules_file)
    fired_at = datetime(2024, 1, 1, tzinfo=timezone.utc)

    assert await store.get_last_fired("high-volume") is None
    await store.set_last_fired("high-volume", fired_at)
    assert await store.get_last_fired("high-volume") == fired_at


@pytest.mark.asyncio
async def test_memory_store_roundtrip():
    rule = AlertRule(id="r1")
    store = InMemoryRuleStore([rule])
    fired_at = datetime(2024, 1, 1, tzinfo=timezone.utc)

    assert await store.get_rule("r1") == rule
    await store.set_last_fired("r1", fired_at)
    assert await store.get_last_fired("r1") == fired_at

    assert await store.delete_rule("r1") is True
    assert await store.get_last_fired("r1") is None
    assert await store.list_rules() == []


def test_rule_matching():
    rule = AlertRule(
        id="r",
        conditions=[
            RuleCondition(metric="volume", operator="gt", threshold=100),
            RuleCondition(metric="tutors", operator="lte", threshold=10),
        ],
    )
    assert rule.matches({"volume": 120, "tutors": 10})
    assert not rule.matches({"volume": 120, "tutors": 11})
    assert not rule.matches({"volume": 120})
    assert not AlertRule(id="empty").matches({"volume": 1})
