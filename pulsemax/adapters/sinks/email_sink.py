"""
Email Sink - SMTP delivery for the email channel.

smtplib is blocking, so each send runs in a worker thread. Without an SMTP
host the sink runs in mock mode and only logs what it would have sent.
"""

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from pulsemax.core.domain.alert import Alert
from pulsemax.core.domain.settings import EmailSettings
from pulsemax.core.ports.notification_sink import NotificationSink

logger = logging.getLogger(__name__)

SEVERITY_COLORS = {
    "low": "#10b981",
    "medium": "#f59e0b",
    "high": "#f97316",
    "critical": "#ef4444",
}


class EmailSink(NotificationSink):
    """
    Sends each alert as a multipart (plain + HTML) email to every recipient.
    """

    channel = "email"

    def __init__(self, settings: EmailSettings | None = None, timeout: float = 10.0):
        self.settings = settings or EmailSettings()
        # Must not exceed the engine's channel timeout
        self.timeout = timeout

    @property
    def mock_mode(self) -> bool:
        return not self.settings.smtp_host

    async def deliver(self, alert: Alert) -> bool:
        if not self.settings.recipients:
            logger.warning(f"No email recipients configured; alert {alert.id} not emailed")
            return False

        message = self.build_message(alert)

        if self.mock_mode:
            logger.info(
                f"[mock email] To: {message['To']} Subject: {message['Subject']}"
            )
            return True

        try:
            await asyncio.to_thread(self._send, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to email alert {alert.id}: {e}")
            return False
        logger.info(f"Email sent for alert {alert.id} to {len(self.settings.recipients)} recipient(s)")
        return True

    def build_message(self, alert: Alert) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = self._subject(alert)
        msg["From"] = self.settings.from_address
        msg["To"] = ", ".join(self.settings.recipients)

        msg.attach(MIMEText(self._text_body(alert), "plain"))
        msg.attach(MIMEText(self._html_body(alert), "html"))
        return msg

    def _send(self, msg: MIMEMultipart) -> None:
        s = self.settings
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=self.timeout) as server:
            if s.use_tls:
                server.starttls()
            if s.username:
                server.login(s.username, s.password or "")
            server.send_message(msg)

    @staticmethod
    def _subject(alert: Alert) -> str:
        if alert.kind == "anomaly":
            anomaly_type = alert.metadata.get("anomaly_type", "Anomaly")
            return f"[{alert.severity.upper()}] Anomaly Detected: {anomaly_type}"
        if alert.source == "churn-predictor":
            return f"[CHURN RISK] {alert.title}"
        if alert.kind == "performance":
            return f"[PERFORMANCE] {alert.title}"
        return f"[{alert.severity.upper()}] {alert.title}"

    def _text_body(self, alert: Alert) -> str:
        lines = [
            alert.title,
            "",
            alert.message,
            "",
            f"Severity: {alert.severity}",
            f"Alert ID: {alert.id}",
            f"Time: {alert.created_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
        ]
        for key, value in alert.metadata.items():
            lines.append(f"{self._format_key(key)}: {value}")
        if self.settings.dashboard_url:
            lines += ["", f"View dashboard: {self.settings.dashboard_url}"]
        return "\n".join(lines)

    def _html_body(self, alert: Alert) -> str:
        color = SEVERITY_COLORS.get(alert.severity, "#3b82f6")
        details = "".join(
            f"<p><strong>{self._format_key(key)}:</strong> {value}</p>"
            for key, value in alert.metadata.items()
        )
        action = ""
        if self.settings.dashboard_url:
            action = f'<p><a href="{self.settings.dashboard_url}">View dashboard</a></p>'

        return f"""
        <html>
          <body style="font-family: Arial, sans-serif;">
            <div style="border-left: 4px solid {color}; padding-left: 20px;">
              <h2 style="color: {color};">{alert.title}</h2>
              <p><strong>Severity:</strong> <span style="color: {color};">{alert.severity.upper()}</span></p>
              <p><strong>Alert ID:</strong> {alert.id}</p>
              <p style="white-space: pre-line;">{alert.message}</p>
              {details}
              {action}
            </div>
          </body>
        </html>
        """

    @staticmethod
    def _format_key(key: str) -> str:
        return key.replace("_", " ").capitalize()
