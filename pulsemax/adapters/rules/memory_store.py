"""
In-Memory Rule Store Adapter - Process-local rules and firing state.
"""

from datetime import datetime
from typing import Iterable

from pulsemax.core.domain.alert import AlertRule
from pulsemax.core.ports.rule_store import RuleStore


class InMemoryRuleStore(RuleStore):
    """
    Rule store backed by dictionaries. Nothing survives a restart.
    """

    def __init__(self, rules: Iterable[AlertRule] = ()):
        self._rules: dict[str, AlertRule] = {rule.id: rule for rule in rules}
        self._last_fired: dict[str, datetime] = {}

    async def list_rules(self) -> list[AlertRule]:
        return list(self._rules.values())

    async def get_rule(self, rule_id: str) -> AlertRule | None:
        return self._rules.get(rule_id)

    async def save_rule(self, rule: AlertRule) -> None:
        self._rules[rule.id] = rule

    async def delete_rule(self, rule_id: str) -> bool:
        if rule_id in self._rules:
            del self._rules[rule_id]
            self._last_fired.pop(rule_id, None)
            return True
        return False

    async def get_last_fired(self, rule_id: str) -> datetime | None:
        return self._last_fired.get(rule_id)

    async def set_last_fired(self, rule_id: str, fired_at: datetime) -> None:
        self._last_fired[rule_id] = fired_at
