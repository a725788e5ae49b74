"""
Notification Service

Renders alert and scaling notifications with Jinja2 and delivers them by
email (SMTP) and, when configured, as Gotify push messages. Delivery failures
are logged and reported through the return value, never raised.
"""

import asyncio
from datetime import datetime
from email.message import EmailMessage
import logging
import smtplib
import ssl
from typing import Any

import httpx
from jinja2 import BaseLoader, Environment, StrictUndefined

from apps.backend.src.core.config import NotificationSettings

logger = logging.getLogger(__name__)

ALERT_MESSAGE_TEMPLATE = (
    "Alert triggered: {{ name }} is {{ value | metric_value }}{{ unit }}, "
    "threshold is {{ threshold | metric_value }}{{ unit }}"
)

ALERT_SUBJECT_TEMPLATE = "[Alert] {{ name }} on {{ server_name }}"

SCALING_SUBJECT_TEMPLATE = "[Autoscaling] {{ server_name }}: {{ action_type }} completed"

SCALING_BODY_TEMPLATE = """
Server {{ server_name }} was resized ({{ action_type }}).

{% if policy_name %}Policy: {{ policy_name }}
{% endif %}{% if metric_value is not none %}Observed: {{ metric_value | metric_value }} (threshold {{ threshold_value | metric_value }})
{% endif %}Previous configuration: {{ old_configuration | format_config }}
New configuration: {{ new_configuration | format_config }}
Completed at: {{ completed_at | format_timestamp }}
""".strip()

GOTIFY_ALERT_PRIORITY = 8
GOTIFY_SCALING_PRIORITY = 5


def _metric_value_filter(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.2f}".rstrip("0").rstrip(".")
    return str(value)


def _format_timestamp_filter(value: Any, format_str: str = "%Y-%m-%d %H:%M:%S UTC") -> str:
    if isinstance(value, datetime):
        return value.strftime(format_str)
    return str(value)


def _format_config_filter(value: dict[str, Any] | None) -> str:
    if not value:
        return "n/a"
    return ", ".join(f"{key}={val}" for key, val in sorted(value.items()))


def send_email(
    subject: str,
    body: str,
    recipient: str,
    config: NotificationSettings,
) -> None:
    """Blocking SMTP send; run it in a worker thread."""
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = config.mail_from
    msg["To"] = recipient
    msg.set_content(body)

    with smtplib.SMTP(config.smtp_host, config.smtp_port, timeout=15) as server:
        if config.smtp_use_tls:
            server.starttls(context=ssl.create_default_context())
        if config.smtp_username and config.smtp_password:
            server.login(config.smtp_username, config.smtp_password)
        server.send_message(msg)


class NotificationService:
    """Renders and delivers alert and scaling notifications"""

    def __init__(self, config: NotificationSettings, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self.transport = transport
        self._jinja_env = Environment(
            loader=BaseLoader(),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )
        self._jinja_env.filters["metric_value"] = _metric_value_filter
        self._jinja_env.filters["format_timestamp"] = _format_timestamp_filter
        self._jinja_env.filters["format_config"] = _format_config_filter
        self._templates = {
            source: self._jinja_env.from_string(source)
            for source in (
                ALERT_MESSAGE_TEMPLATE,
                ALERT_SUBJECT_TEMPLATE,
                SCALING_SUBJECT_TEMPLATE,
                SCALING_BODY_TEMPLATE,
            )
        }

    def render(self, template: str, **context: Any) -> str:
        compiled = self._templates.get(template)
        if compiled is None:
            compiled = self._jinja_env.from_string(template)
        return compiled.render(**context).strip()

    def render_alert_message(self, name: str, value: float, threshold: float, unit: str) -> str:
        return self.render(ALERT_MESSAGE_TEMPLATE, name=name, value=value, threshold=threshold, unit=unit)

    @property
    def email_enabled(self) -> bool:
        return bool(self.config.smtp_host)

    @property
    def gotify_enabled(self) -> bool:
        return bool(self.config.gotify_url and self.config.gotify_token)

    async def notify(
        self, recipient: str | None, subject: str, body: str, priority: int = GOTIFY_SCALING_PRIORITY
    ) -> bool:
        """Deliver on every configured channel; True if any channel succeeded."""
        delivered = False
        if recipient and self.email_enabled:
            delivered = await self._send_email(recipient, subject, body) or delivered
        if self.gotify_enabled:
            delivered = await self._send_to_gotify(subject, body, priority) or delivered
        return delivered

    async def notify_alert(
        self, recipient: str | None, name: str, server_name: str, message: str
    ) -> bool:
        subject = self.render(ALERT_SUBJECT_TEMPLATE, name=name, server_name=server_name)
        return await self.notify(recipient, subject, message, priority=GOTIFY_ALERT_PRIORITY)

    async def notify_scaling(self, recipient: str | None, **context: Any) -> bool:
        context.setdefault("policy_name", None)
        context.setdefault("metric_value", None)
        context.setdefault("threshold_value", None)
        subject = self.render(SCALING_SUBJECT_TEMPLATE, **context)
        body = self.render(SCALING_BODY_TEMPLATE, **context)
        return await self.notify(recipient, subject, body, priority=GOTIFY_SCALING_PRIORITY)

    async def _send_email(self, recipient: str, subject: str, body: str) -> bool:
        try:
            await asyncio.to_thread(send_email, subject, body, recipient, self.config)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("notification.email.failed", extra={"recipient": recipient, "error": str(e)})
            return False
        logger.info("notification.email.sent", extra={"recipient": recipient})
        return True

    async def _send_to_gotify(self, title: str, message: str, priority: int) -> bool:
        url = f"{self.config.gotify_url.rstrip('/')}/message"
        payload = {"title": title, "message": message, "priority": priority}
        try:
            async with httpx.AsyncClient(timeout=10, transport=self.transport) as client:
                response = await client.post(url, json=payload, params={"token": self.config.gotify_token})
        except httpx.HTTPError as e:
            logger.warning("notification.gotify.failed", extra={"error": repr(e)})
            return False

        if response.status_code != 200:
            logger.warning(
                "notification.gotify.failed",
                extra={"status_code": response.status_code, "response_text": response.text[:200]},
            )
            return False
        return True
