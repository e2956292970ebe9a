import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from pulsemax.adapters.config.settings_loader import load_settings
from pulsemax.adapters.metrics.prometheus import PrometheusMetricSource
from pulsemax.adapters.rules.memory_store import InMemoryRuleStore
from pulsemax.adapters.rules.yaml_store import YamlRuleStore
from pulsemax.adapters.sinks.dashboard import DashboardSink
from pulsemax.adapters.sinks.email_sink import EmailSink
from pulsemax.adapters.sinks.kafka import KafkaAlertSink
from pulsemax.adapters.sinks.logging_sink import LoggingSink
from pulsemax.adapters.sinks.webhook import WebhookSink
from pulsemax.core.domain.monitor import Monitor, MonitorResult
from pulsemax.core.domain.settings import SystemSettings
from pulsemax.core.ports.notification_sink import NotificationSink
from pulsemax.core.ports.rule_store import RuleStore
from pulsemax.core.services.alert_engine import AlertEngine
from pulsemax.core.services.anomaly import AnomalyDetector
from pulsemax.core.services.forecaster import Forecaster
from pulsemax.core.services.monitoring_loop import MonitoringLoop
from pulsemax.core.services.risk_scorer import RiskScorer

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a process needs, wired from one SystemSettings."""

    settings: SystemSettings
    forecaster: Forecaster
    detector: AnomalyDetector
    scorer: RiskScorer
    engine: AlertEngine
    rule_store: RuleStore
    source: PrometheusMetricSource
    monitoring: MonitoringLoop
    dashboard: DashboardSink | None = None

    async def close(self) -> None:
        await self.engine.close()
        await self.source.close()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_sinks(settings: SystemSettings) -> tuple[list[NotificationSink], DashboardSink | None]:
    """One sink per channel. Kafka, when enabled, serves the dashboard channel."""
    alerting = settings.alerting
    dashboard = None

    if alerting.kafka.enabled:
        sinks: list[NotificationSink] = [KafkaAlertSink(alerting.kafka)]
    else:
        dashboard = DashboardSink(max_size=alerting.dashboard_feed_size)
        sinks = [dashboard]

    sinks.append(EmailSink(alerting.email, timeout=alerting.channel_timeout_seconds))
    if alerting.webhook.url:
        sinks.append(WebhookSink(alerting.webhook, timeout=alerting.channel_timeout_seconds))
    else:
        logger.info("Webhook URL not configured; webhook channel disabled")
    sinks.append(LoggingSink("sms"))
    return sinks, dashboard


def build_services(settings: SystemSettings | None = None) -> Services:
    """
    Construct every service explicitly from settings.
    """
    settings = settings or load_settings()

    if settings.alerting.rules_file:
        rule_store: RuleStore = YamlRuleStore(settings.alerting.rules_file)
    else:
        rule_store = InMemoryRuleStore()

    sinks, dashboard = build_sinks(settings)
    engine = AlertEngine(sinks, rule_store=rule_store, settings=settings.alerting)

    forecaster = Forecaster(settings.forecaster)
    detector = AnomalyDetector()
    source = PrometheusMetricSource(read_url=settings.prometheus_url)

    return Services(
        settings=settings,
        forecaster=forecaster,
        detector=detector,
        scorer=RiskScorer(settings.risk_scorer),
        engine=engine,
        rule_store=rule_store,
        source=source,
        monitoring=MonitoringLoop(source, forecaster, detector, engine),
        dashboard=dashboard,
    )


def load_monitors(path: str | Path) -> list[Monitor]:
    """Monitors from a YAML file with a top-level `monitors` list."""
    path = Path(path)
    if not path.exists():
        logger.warning(f"Monitors file {path} not found")
        return []

    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return [Monitor(**item) for item in data.get("monitors", [])]


async def run_monitors(services: Services, monitors: list[Monitor]) -> list[MonitorResult]:
    """Run every enabled monitor once. One failing monitor does not stop the rest."""
    results = []
    for monitor in monitors:
        if not monitor.enabled:
            continue
        try:
            results.append(await services.monitoring.run_monitor(monitor))
        except Exception as e:
            logger.error(f"Monitor '{monitor.name}' failed: {e}")
    return results


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    services = build_services(settings)
    monitors = load_monitors(os.getenv("PULSEMAX_MONITORS_FILE", "monitors.yaml"))

    async def _execute():
        try:
            results = await run_monitors(services, monitors)
            fired = sum(len(r.alerts) for r in results)
            logger.info(f"Ran {len(results)} monitor(s); {fired} alert(s) raised")
        finally:
            await services.close()

    asyncio.run(_execute())


if __name__ == "__main__":
    main()
