"""
YAML Rule Store Adapter - File-based alert rule definitions.

Loads rules from a YAML file:

    rules:
      - id: high-volume
        name: High session volume
        severity: high
        channels: [dashboard, email]
        cooldown_minutes: 30
        conditions:
          - {metric: session_volume, operator: gt, threshold: 100}

Firing state is kept in memory only.
"""

import logging
from datetime import datetime
from pathlib import Path

import yaml
from pydantic import ValidationError

from pulsemax.core.domain.alert import AlertRule
from pulsemax.core.ports.rule_store import RuleStore

logger = logging.getLogger(__name__)


class YamlRuleStore(RuleStore):
    """
    Rule store that reads rules from a YAML file.
    """

    def __init__(self, rules_path: str | Path):
        self.rules_path = Path(rules_path)
        self._rules: dict[str, AlertRule] = {}
        self._last_fired: dict[str, datetime] = {}
        self._loaded = False

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self._load_rules()
            self._loaded = True

    def _load_rules(self) -> None:
        if not self.rules_path.exists():
            logger.info(f"Rules file {self.rules_path} not found; starting with no rules")
            return

        with open(self.rules_path) as f:
            data = yaml.safe_load(f) or {}

        for rule_data in data.get("rules", []):
            try:
                rule = AlertRule(**rule_data)
                self._rules[rule.id] = rule
            except (ValidationError, TypeError) as e:
                logger.error(f"Error loading rule from {self.rules_path}: {e}")

        logger.info(f"Loaded {len(self._rules)} alert rule(s) from {self.rules_path}")

    async def list_rules(self) -> list[AlertRule]:
        self._ensure_loaded()
        return list(self._rules.values())

    async def get_rule(self, rule_id: str) -> AlertRule | None:
        self._ensure_loaded()
        return self._rules.get(rule_id)

    async def save_rule(self, rule: AlertRule) -> None:
        self._ensure_loaded()
        self._rules[rule.id] = rule
        await self._save_to_file()

    async def delete_rule(self, rule_id: str) -> bool:
        self._ensure_loaded()
        if rule_id in self._rules:
            del self._rules[rule_id]
            self._last_fired.pop(rule_id, None)
            await self._save_to_file()
            return True
        return False

    async def get_last_fired(self, rule_id: str) -> datetime | None:
        return self._last_fired.get(rule_id)

    async def set_last_fired(self, rule_id: str, fired_at: datetime) -> None:
        self._last_fired[rule_id] = fired_at

    async def _save_to_file(self) -> None:
        rules_data = [r.model_dump(mode="json") for r in self._rules.values()]

        with open(self.rules_path, "w") as f:
            yaml.dump({"rules": rules_data}, f, default_flow_style=False)
