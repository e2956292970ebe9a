"""
RuleStore Port - Interface for loading alert rules and their firing state.

This port defines the contract for reading and writing rule definitions and
the per-rule last-fired timestamp used for cooldowns.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pulsemax.core.domain.alert import AlertRule


class RuleStore(ABC):
    """
    Abstract interface for alert rule storage.

    Implementations:
    - InMemoryRuleStore: process-local
    - YamlRuleStore: file-based rule definitions
    """

    @abstractmethod
    async def list_rules(self) -> list["AlertRule"]:
        """
        List all configured rules.

        Returns:
            List of AlertRule objects
        """
        ...

    @abstractmethod
    async def get_rule(self, rule_id: str) -> "AlertRule | None":
        """
        Get a specific rule by id.

        Returns:
            AlertRule if found, None otherwise
        """
        ...

    @abstractmethod
    async def save_rule(self, rule: "AlertRule") -> None:
        """Save or update a rule."""
        ...

    @abstractmethod
    async def delete_rule(self, rule_id: str) -> bool:
        """
        Delete a rule by id.

        Returns:
            True if deleted, False if not found
        """
        ...

    @abstractmethod
    async def get_last_fired(self, rule_id: str) -> datetime | None:
        """When the rule last produced an alert, if ever."""
        ...

    @abstractmethod
    async def set_last_fired(self, rule_id: str, fired_at: datetime) -> None:
        """Record that the rule produced an alert."""
        ...
