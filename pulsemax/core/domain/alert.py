"""
Alert Domain Models - Alerts, rules and delivery bookkeeping.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal, get_args

from pydantic import BaseModel, Field

AlertKind = Literal["anomaly", "threshold", "system", "performance"]
Severity = Literal["low", "medium", "high", "critical"]
Channel = Literal["dashboard", "email", "webhook", "sms"]
AlertStatus = Literal["active", "acknowledged", "resolved", "dismissed"]
Operator = Literal["gt", "lt", "gte", "lte", "eq"]

ALERT_KINDS: tuple[str, ...] = get_args(AlertKind)
SEVERITIES: tuple[str, ...] = get_args(Severity)
CHANNELS: tuple[str, ...] = get_args(Channel)
STATUSES: tuple[str, ...] = get_args(AlertStatus)

# Lower value = more urgent
SEVERITY_PRIORITY: dict[str, int] = {"critical": 0, "high": 1, "medium": 2, "low": 3}

# Higher severity reaches a superset of the channels of lower severities.
SEVERITY_CHANNELS: dict[str, tuple[str, ...]] = {
    "critical": ("dashboard", "email", "webhook"),
    "high": ("dashboard", "email"),
    "medium": ("dashboard",),
    "low": ("dashboard",),
}

TERMINAL_STATUSES: frozenset[str] = frozenset({"resolved", "dismissed"})

# Opaque passthrough values; consumers must not assume specific keys exist.
Metadata = dict[str, Any]


@dataclass
class Alert:
    """
    An alert with identity and lifecycle.

    Only the AlertEngine mutates alerts; everything it hands out is a copy.
    """

    id: str
    kind: AlertKind
    severity: Severity
    title: str
    message: str
    source: str
    created_at: datetime
    metadata: Metadata = field(default_factory=dict)
    channels: list[Channel] = field(default_factory=list)
    status: AlertStatus = "active"
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    dismissed_at: datetime | None = None
    dismissed_by: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation (datetimes as ISO strings)."""
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = value.isoformat()
        return data


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one dispatch attempt to one channel."""

    channel: str
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class AlertStatistics:
    total: int
    by_status: dict[str, int]
    by_severity: dict[str, int]
    by_kind: dict[str, int]


# --- Rule Configuration ---

class RuleCondition(BaseModel):
    """A single metric comparison."""

    metric: str
    operator: Operator
    threshold: float

    def matches(self, value: float) -> bool:
        if self.operator == "gt":
            return value > self.threshold
        if self.operator == "lt":
            return value < self.threshold
        if self.operator == "gte":
            return value >= self.threshold
        if self.operator == "lte":
            return value <= self.threshold
        return value == self.threshold


class AlertRule(BaseModel):
    """
    Threshold rule. Fires when every condition holds, at most once per
    cooldown window.
    """

    # --- Identity ---
    id: str
    name: str = ""
    enabled: bool = True

    # --- Alert ---
    severity: Severity = "medium"
    channels: list[Channel] = Field(default_factory=lambda: ["dashboard"])

    # --- Trigger ---
    conditions: list[RuleCondition] = Field(default_factory=list)
    cooldown_minutes: float = Field(default=15.0, ge=0)

    def matches(self, metrics: dict[str, float]) -> bool:
        """All conditions hold. A condition on an absent metric never holds."""
        if not self.conditions:
            return False
        return all(
            c.metric in metrics and c.matches(metrics[c.metric])
            for c in self.conditions
        )
