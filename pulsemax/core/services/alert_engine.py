"""
Alert Engine - Creation, dispatch and lifecycle of alerts.

The engine is the only stateful component of the core:
1. Validate and record the alert (status 'active')
2. Dispatch it to every channel concurrently, best-effort
3. Serve lifecycle transitions (acknowledge / resolve / dismiss)
4. Fire threshold rules, at most once per cooldown window
"""

import asyncio
import copy
import itertools
import json
import logging
import secrets
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Mapping

from pulsemax.core.domain.alert import (
    ALERT_KINDS,
    CHANNELS,
    SEVERITIES,
    SEVERITY_CHANNELS,
    SEVERITY_PRIORITY,
    STATUSES,
    Alert,
    AlertRule,
    AlertStatistics,
    DeliveryResult,
    Metadata,
)
from pulsemax.core.domain.errors import DeliveryError, InvalidInputError, NotFoundError
from pulsemax.core.domain.scoring import ScoreResult
from pulsemax.core.domain.settings import AlertingSettings
from pulsemax.core.ports.notification_sink import NotificationSink
from pulsemax.core.ports.rule_store import RuleStore

logger = logging.getLogger(__name__)

SEVERITY_ICONS = {
    "critical": "🚨",
    "high": "⚠️",
    "medium": "⚡",
    "low": "ℹ️",
}

# Severity order used to check that channel fan-out only grows with severity
_ASCENDING_SEVERITIES = ("low", "medium", "high", "critical")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertEngine:
    """
    Owns the alert table and the rule firing state.

    All table access goes through one re-entrant lock; channel dispatch
    happens outside it so a slow channel never blocks lifecycle calls.
    """

    def __init__(
        self,
        sinks: Iterable[NotificationSink] = (),
        rule_store: RuleStore | None = None,
        settings: AlertingSettings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize the engine.

        Args:
            sinks: One delivery sink per channel
            rule_store: Rule definitions and last-fired state (rules only)
            settings: Dispatch and severity policy
            clock: Source of "now" (injectable for tests)
        """
        self.settings = settings or AlertingSettings()
        self.rule_store = rule_store
        self._clock = clock

        self._sinks: dict[str, NotificationSink] = {}
        for sink in sinks:
            if sink.channel not in CHANNELS:
                raise InvalidInputError(f"Unknown channel '{sink.channel}'")
            self._sinks[sink.channel] = sink

        self._severity_channels = self._build_severity_channels(self.settings.severity_channels)

        self._alerts: dict[str, Alert] = {}
        self._deliveries: dict[str, list[DeliveryResult]] = {}
        self._lock = threading.RLock()
        self._rule_lock = asyncio.Lock()
        self._counter = itertools.count(1)
        self._background: set[asyncio.Task] = set()

    # --- Creation ---

    async def create_alert(
        self,
        kind: str,
        severity: str,
        title: str,
        message: str,
        source: str,
        metadata: Metadata | None = None,
        channels: Iterable[str] | None = None,
    ) -> Alert:
        """
        Create and dispatch a new alert.

        Creation succeeds once the input is valid; channel failures are
        logged and never roll the alert back.

        Returns:
            A copy of the stored alert
        """
        channel_list = list(dict.fromkeys(channels)) if channels is not None else ["dashboard"]
        self._validate(kind, severity, channel_list)
        if not title:
            raise InvalidInputError("Alert title must not be empty")

        metadata = dict(metadata or {})
        try:
            json.dumps(metadata)
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Alert metadata must be JSON-serializable: {e}")

        now = self._now()
        alert = Alert(
            id=self._generate_id(now),
            kind=kind,
            severity=severity,
            title=title,
            message=message,
            source=source,
            created_at=now,
            metadata=metadata,
            channels=channel_list,
        )

        with self._lock:
            self._alerts[alert.id] = alert
            self._deliveries[alert.id] = []
            snapshot = copy.deepcopy(alert)

        logger.info(f"Created {severity} {kind} alert {alert.id} from '{source}': {title}")

        if self.settings.dispatch_mode == "background":
            task = asyncio.create_task(self.dispatch(copy.deepcopy(snapshot)))
            self._background.add(task)
            task.add_done_callback(self._background.discard)
        else:
            await self.dispatch(copy.deepcopy(snapshot))

        return snapshot

    async def create_anomaly_alert(
        self,
        anomaly_type: str,
        severity: str,
        current_value: float,
        expected_value: float,
        metric: str,
        metadata: Metadata | None = None,
    ) -> Alert:
        """
        Create an alert from a detected anomaly.

        Title and message are derived from the deviation; channels follow the
        severity policy.
        """
        self._validate_severity(severity)

        direction = "above" if current_value > expected_value else "below"
        deviation = None
        if expected_value != 0:
            deviation = (current_value - expected_value) / expected_value * 100

        title = f"{SEVERITY_ICONS[severity]} {severity.upper()}: {anomaly_type} in {metric}"
        if deviation is None:
            message = (
                f"Anomaly detected in {metric}: Current value {current_value:.2f} "
                f"deviates from expected value of {expected_value:.2f}. Severity: {severity}."
            )
        else:
            message = (
                f"Anomaly detected in {metric}: Current value {current_value:.2f} is "
                f"{abs(deviation):.0f}% {direction} expected value of {expected_value:.2f}. "
                f"Severity: {severity}."
            )

        return await self.create_alert(
            "anomaly",
            severity,
            title,
            message,
            "anomaly-detector",
            {
                "anomaly_type": anomaly_type,
                "metric": metric,
                "current_value": current_value,
                "expected_value": expected_value,
                "deviation_percent": round(deviation, 1) if deviation is not None else None,
                "direction": direction,
                **(metadata or {}),
            },
            self.channels_for_severity(severity),
        )

    async def create_churn_alert(
        self,
        result: ScoreResult,
        entity_name: str | None = None,
    ) -> Alert | None:
        """
        Alert on a high or critical churn score. Lower tiers produce nothing.
        """
        if result.risk_tier not in ("high", "critical"):
            return None

        name = entity_name or result.entity_id
        factor_lines = "\n".join(f"- {f.factor}: {f.description}" for f in result.ranked_factors)
        message = (
            f'Customer "{name}" (ID: {result.entity_id}) has a '
            f"{result.probability * 100:.1f}% churn probability.\n\n"
            f"Risk Level: {result.risk_tier}"
        )
        if factor_lines:
            message += f"\n\nTop Risk Factors:\n{factor_lines}"

        return await self.create_alert(
            "threshold",
            result.risk_tier,
            f"Churn Risk Alert: {name}",
            message,
            "churn-predictor",
            {
                "entity_id": result.entity_id,
                "churn_probability": round(result.probability, 4),
                "risk_tier": result.risk_tier,
                "risk_factors": [f.factor for f in result.ranked_factors],
                "recommended_actions": list(result.recommended_actions),
                "confidence": result.confidence,
            },
            self.channels_for_severity(result.risk_tier),
        )

    def channels_for_severity(self, severity: str) -> list[str]:
        self._validate_severity(severity)
        return list(self._severity_channels[severity])

    # --- Dispatch ---

    async def dispatch(self, alert: Alert) -> list[DeliveryResult]:
        """
        Attempt delivery on every channel of the alert concurrently.

        Never raises for channel failures; each attempt is bounded by the
        channel timeout.
        """
        results = await asyncio.gather(
            *(self._deliver(channel, alert) for channel in alert.channels)
        )

        with self._lock:
            self._deliveries.setdefault(alert.id, []).extend(results)

        failed = [r.channel for r in results if not r.success]
        if failed:
            logger.warning(f"Alert {alert.id} not delivered to {failed}")
        return list(results)

    async def _deliver(self, channel: str, alert: Alert) -> DeliveryResult:
        sink = self._sinks.get(channel)
        if sink is None:
            error = DeliveryError(channel, "no sink configured")
            logger.warning(f"Skipping alert {alert.id}: {error}")
            return DeliveryResult(channel, False, error.reason)

        timeout = self.settings.channel_timeout_seconds
        try:
            delivered = await asyncio.wait_for(sink.deliver(alert), timeout=timeout)
            if not delivered:
                raise DeliveryError(channel, "sink reported failure")
        except asyncio.TimeoutError:
            logger.error(f"Delivery of alert {alert.id} to '{channel}' timed out after {timeout}s")
            return DeliveryResult(channel, False, "timeout")
        except DeliveryError as e:
            logger.error(f"Failed to dispatch alert {alert.id}: {e}")
            return DeliveryResult(channel, False, e.reason)
        except Exception as e:
            logger.error(f"Failed to dispatch alert {alert.id} to '{channel}': {e}")
            return DeliveryResult(channel, False, str(e) or type(e).__name__)

        logger.debug(f"Alert {alert.id} delivered to '{channel}'")
        return DeliveryResult(channel, True)

    def deliveries(self, alert_id: str) -> list[DeliveryResult]:
        """Recorded delivery attempts for an alert."""
        with self._lock:
            if alert_id not in self._alerts:
                raise NotFoundError(alert_id)
            return list(self._deliveries.get(alert_id, []))

    # --- Lifecycle ---

    def acknowledge(self, alert_id: str, acknowledged_by: str) -> bool:
        """Acknowledge an active alert. False if unknown or not active."""
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.status != "active":
                logger.debug(f"Cannot acknowledge alert {alert_id}")
                return False

            alert.status = "acknowledged"
            alert.acknowledged_at = self._now()
            alert.acknowledged_by = acknowledged_by

        logger.info(f"Alert {alert_id} acknowledged by {acknowledged_by}")
        return True

    def resolve(self, alert_id: str, resolved_by: str) -> bool:
        """Resolve an active or acknowledged alert. Terminal alerts stay as they are."""
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.status not in ("active", "acknowledged"):
                logger.debug(f"Cannot resolve alert {alert_id}")
                return False

            alert.status = "resolved"
            alert.resolved_at = self._now()
            alert.resolved_by = resolved_by

        logger.info(f"Alert {alert_id} resolved by {resolved_by}")
        return True

    def dismiss(self, alert_id: str, dismissed_by: str) -> bool:
        """Dismiss an active alert."""
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.status != "active":
                logger.debug(f"Cannot dismiss alert {alert_id}")
                return False

            alert.status = "dismissed"
            alert.dismissed_at = self._now()
            alert.dismissed_by = dismissed_by

        logger.info(f"Alert {alert_id} dismissed by {dismissed_by}")
        return True

    # --- Queries ---

    def get(self, alert_id: str) -> Alert:
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                raise NotFoundError(alert_id)
            return copy.deepcopy(alert)

    def list_alerts(
        self,
        status: str | None = None,
        severity: str | None = None,
        kind: str | None = None,
        limit: int | None = None,
    ) -> list[Alert]:
        """
        All alerts matching the filters, newest first.

        Args:
            status: Only this status
            severity: Only this severity
            kind: Only this kind
            limit: At most this many alerts
        """
        if status is not None and status not in STATUSES:
            raise InvalidInputError(f"Unknown status '{status}'")
        if severity is not None:
            self._validate_severity(severity)
        if kind is not None and kind not in ALERT_KINDS:
            raise InvalidInputError(f"Unknown alert kind '{kind}'")
        if limit is not None and limit < 0:
            raise InvalidInputError(f"limit must be >= 0, got {limit}")

        alerts = [
            alert for alert in self._newest_first()
            if (status is None or alert.status == status)
            and (severity is None or alert.severity == severity)
            and (kind is None or alert.kind == kind)
        ]
        if limit is not None:
            alerts = alerts[:limit]
        return alerts

    def active_alerts(self, severity: str | None = None) -> list[Alert]:
        """Active alerts, most severe first, then newest first."""
        alerts = self.list_alerts(status="active", severity=severity)
        return sorted(alerts, key=lambda a: SEVERITY_PRIORITY[a.severity])

    def statistics(self) -> AlertStatistics:
        with self._lock:
            alerts = list(self._alerts.values())

        return AlertStatistics(
            total=len(alerts),
            by_status={s: sum(1 for a in alerts if a.status == s) for s in STATUSES},
            by_severity={s: sum(1 for a in alerts if a.severity == s) for s in SEVERITIES},
            by_kind={k: sum(1 for a in alerts if a.kind == k) for k in ALERT_KINDS},
        )

    # --- Rules ---

    async def evaluate_rule(
        self,
        rule: AlertRule,
        metrics: Mapping[str, float],
    ) -> Alert | None:
        """
        Fire a rule if it is enabled, all its conditions hold, and its
        cooldown has elapsed. Breaches inside the cooldown are dropped.

        Returns:
            The new alert, or None when nothing fired
        """
        if self.rule_store is None:
            raise RuntimeError("Rule evaluation requires a rule store")
        if not rule.enabled or not rule.matches(dict(metrics)):
            return None

        now = self._now()
        async with self._rule_lock:
            last_fired = await self.rule_store.get_last_fired(rule.id)
            if last_fired is not None and now - last_fired < timedelta(minutes=rule.cooldown_minutes):
                logger.debug(f"Rule '{rule.id}' suppressed; last fired at {last_fired.isoformat()}")
                return None
            await self.rule_store.set_last_fired(rule.id, now)

        breached = ", ".join(
            f"{c.metric} {metrics[c.metric]:.2f} {c.operator} {c.threshold:.2f}"
            for c in rule.conditions
        )
        name = rule.name or rule.id
        logger.info(f"Rule '{rule.id}' fired: {breached}")

        return await self.create_alert(
            "threshold",
            rule.severity,
            name,
            f"Rule '{name}' triggered: {breached}",
            f"rule:{rule.id}",
            {
                "rule_id": rule.id,
                "metrics": {c.metric: metrics[c.metric] for c in rule.conditions},
            },
            rule.channels,
        )

    async def evaluate_rules(self, metrics: Mapping[str, float]) -> list[Alert]:
        """Evaluate every stored rule against one set of metric values."""
        if self.rule_store is None:
            raise RuntimeError("Rule evaluation requires a rule store")

        fired = []
        for rule in await self.rule_store.list_rules():
            alert = await self.evaluate_rule(rule, metrics)
            if alert is not None:
                fired.append(alert)
        return fired

    # --- Housekeeping ---

    async def close(self) -> None:
        """Wait for background dispatches, then close every sink."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        for sink in self._sinks.values():
            await sink.close()

    def _now(self) -> datetime:
        return self._clock()

    def _generate_id(self, now: datetime) -> str:
        millis = int(now.timestamp() * 1000)
        return f"alert_{millis}_{next(self._counter)}_{secrets.token_hex(3)}"

    def _newest_first(self) -> list[Alert]:
        with self._lock:
            indexed = list(enumerate(self._alerts.values()))
            indexed.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
            return [copy.deepcopy(alert) for _, alert in indexed]

    def _validate(self, kind: str, severity: str, channels: list[str]) -> None:
        if kind not in ALERT_KINDS:
            raise InvalidInputError(f"Unknown alert kind '{kind}'")
        self._validate_severity(severity)
        for channel in channels:
            if channel not in CHANNELS:
                raise InvalidInputError(f"Unknown channel '{channel}'")

    @staticmethod
    def _validate_severity(severity: str) -> None:
        if severity not in SEVERITIES:
            raise InvalidInputError(f"Unknown severity '{severity}'")

    @staticmethod
    def _build_severity_channels(
        overrides: Mapping[str, list[str]] | None,
    ) -> dict[str, tuple[str, ...]]:
        table = dict(SEVERITY_CHANNELS)
        for severity, channels in (overrides or {}).items():
            if severity not in SEVERITIES:
                raise InvalidInputError(f"Unknown severity '{severity}'")
            for channel in channels:
                if channel not in CHANNELS:
                    raise InvalidInputError(f"Unknown channel '{channel}'")
            table[severity] = tuple(dict.fromkeys(channels))

        for lower, higher in zip(_ASCENDING_SEVERITIES, _ASCENDING_SEVERITIES[1:]):
            if not set(table[lower]) <= set(table[higher]):
                raise InvalidInputError(
                    f"Channels for '{higher}' must include every channel for '{lower}'"
                )
        return table
