"""
Alert Manager - Send notifications on billing, analytics and job events via Slack or email.
"""

import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, List, Optional

import requests

from ..common import events
from ..common.date_utils import utcnow
from .config import AlertsConfig, EmailConfig, SlackConfig

logger = logging.getLogger(__name__)


@dataclass
class AlertContext:
    """Context for alert messages."""
    title: str
    status: str                     # failed, completed, warning
    error_message: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)


class AlertChannel(ABC):
    """Base class for alert channels."""

    @abstractmethod
    def send(self, context: AlertContext, message: str) -> bool:
        """
        Send alert message.

        Args:
            context: Alert context
            message: Formatted message

        Returns:
            True on success
        """

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if channel is properly configured."""


class SlackAlertChannel(AlertChannel):
    """Slack webhook alert channel."""

    COLORS = {
        'failed': 'danger',
        'completed': 'good',
        'warning': 'warning',
    }

    def __init__(self, config: SlackConfig):
        self.config = config

    def is_configured(self) -> bool:
        """Check if Slack is configured."""
        return bool(self.config.enabled and self.config.webhook_url)

    def send(self, context: AlertContext, message: str) -> bool:
        """Send Slack alert."""
        if not self.is_configured():
            return False

        payload = {
            'username': self.config.username,
            'channel': self.config.channel,
            'attachments': [{
                'color': self.COLORS.get(context.status, '#808080'),
                'title': context.title,
                'text': message,
                'fields': [
                    {'title': name, 'value': str(value), 'short': True}
                    for name, value in context.fields.items()
                ],
                'ts': int(context.timestamp.timestamp()),
            }]
        }

        try:
            response = requests.post(self.config.webhook_url, json=payload, timeout=30)
        except requests.RequestException as e:
            logger.error(f"Slack alert error: {e}")
            return False

        if response.status_code == 200:
            logger.info(f"Slack alert sent: {context.title}")
            return True
        logger.error(f"Slack alert failed: {response.status_code} - {response.text}")
        return False


class EmailAlertChannel(AlertChannel):
    """Email SMTP alert channel."""

    def __init__(self, config: EmailConfig):
        self.config = config

    def is_configured(self) -> bool:
        """Check if email is configured."""
        return bool(
            self.config.enabled and
            self.config.smtp_host and
            self.config.to_addresses
        )

    def send(self, context: AlertContext, message: str) -> bool:
        """Send email alert."""
        if not self.is_configured():
            return False
        # Email only carries failures unless configured down to info
        if context.status == 'completed' and self.config.min_severity != 'info':
            return False

        msg = MIMEMultipart()
        msg['From'] = self.config.from_address
        msg['To'] = ', '.join(self.config.to_addresses)
        msg['Subject'] = f"[{context.status.upper()}] {context.title}"

        body = f"""
Fleet Alert
===========

{context.title}
Status: {context.status.upper()}
Timestamp (UTC): {context.timestamp:%Y-%m-%d %H:%M:%S}

{message}
"""
        if context.fields:
            body += '\n'.join(f"{name}: {value}" for name, value in context.fields.items()) + '\n'
        if context.error_message:
            body += f"""
Error Details
-------------
{context.error_message}
"""
        msg.attach(MIMEText(body, 'plain'))

        try:
            with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port) as server:
                server.starttls()
                if self.config.smtp_user and self.config.smtp_password:
                    server.login(self.config.smtp_user, self.config.smtp_password)
                server.sendmail(self.config.from_address, self.config.to_addresses, msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Email alert error: {e}")
            return False

        logger.info(f"Email alert sent: {context.title}")
        return True


class AlertManager:
    """
    Manages alert channels and routing.

    Sends notifications on:
    - Failed billing charges
    - Billing cycle summaries (failures always, clean runs when on_success is set)
    - Failed analytics runs and scheduler jobs
    """

    TEMPLATES = {
        'payment_failed': "Daily rent charge of {amount} failed for contract {contract_id}.\nReason: {reason}",
        'billing_summary': (
            "Billing cycle finished: {total} contracts, {successful} charged, "
            "{failed} failed, total {total_amount}."
        ),
        'analytics_failed': "Daily analytics recalculation failed.\nError: {error}",
        'job_failed': "Scheduled job '{job_name}' failed (triggered by {triggered_by}).\nError: {error}",
    }

    def __init__(self, config: AlertsConfig):
        """
        Initialize alert manager.

        Args:
            config: Alert configuration
        """
        self.config = config
        self.channels: List[AlertChannel] = []

        if config.slack.enabled:
            self.channels.append(SlackAlertChannel(config.slack))

        if config.email.enabled:
            self.channels.append(EmailAlertChannel(config.email))

        logger.info(f"AlertManager initialized with {len(self.channels)} channel(s)")

    def connect_signals(self):
        """Subscribe to the domain event signals."""
        events.billing_payment_failed.connect(self._on_payment_failed, weak=False)
        events.billing_daily_completed.connect(self._on_billing_completed, weak=False)
        events.analytics_daily_completed.connect(self._on_analytics_completed, weak=False)
        events.analytics_daily_failed.connect(self._on_analytics_failed, weak=False)
        events.contract_created.connect(self._on_contract_event, weak=False)
        events.contract_status_changed.connect(self._on_contract_event, weak=False)

    def disconnect_signals(self):
        events.billing_payment_failed.disconnect(self._on_payment_failed)
        events.billing_daily_completed.disconnect(self._on_billing_completed)
        events.analytics_daily_completed.disconnect(self._on_analytics_completed)
        events.analytics_daily_failed.disconnect(self._on_analytics_failed)
        events.contract_created.disconnect(self._on_contract_event)
        events.contract_status_changed.disconnect(self._on_contract_event)

    # ------------------------------------------------------------------
    # Signal receivers
    # ------------------------------------------------------------------

    def _on_payment_failed(self, sender, event: events.PaymentFailedEvent):
        logger.warning(f"Payment failed: contract={event.contract_id} driver={event.driver_id} reason={event.reason}")
        context = AlertContext(
            title=f"Billing charge failed: contract {event.contract_id}",
            status='failed',
            error_message=event.reason,
            fields={'Driver': event.driver_id, 'Amount': event.amount},
            timestamp=event.timestamp,
        )
        self._send_to_all(context, self.TEMPLATES['payment_failed'].format(**event.to_dict()))

    def _on_billing_completed(self, sender, event: events.DailyBillingCompletedEvent):
        stats = event.stats
        logger.info(f"Billing cycle completed: {stats}")
        failed = stats.get('failed', 0)
        if not failed and not self.config.slack.on_success:
            return
        context = AlertContext(
            title='Billing cycle completed' if not failed else 'Billing cycle completed with failures',
            status='warning' if failed else 'completed',
            fields={'Total': stats.get('total'), 'Failed': failed},
            timestamp=event.timestamp,
        )
        self._send_to_all(context, self.TEMPLATES['billing_summary'].format(**stats))

    def _on_analytics_completed(self, sender, event: events.AnalyticsCompletedEvent):
        logger.info(f"Daily analytics completed for {event.companies_processed} companies")

    def _on_analytics_failed(self, sender, event: events.AnalyticsFailedEvent):
        logger.error(f"Daily analytics failed: {event.error}")
        context = AlertContext(
            title='Daily analytics failed',
            status='failed',
            error_message=event.error,
            timestamp=event.timestamp,
        )
        self._send_to_all(context, self.TEMPLATES['analytics_failed'].format(error=event.error))

    def _on_contract_event(self, sender, event):
        logger.info(f"{type(event).__name__}: {event.to_dict()}")

    # ------------------------------------------------------------------
    # Direct alerts
    # ------------------------------------------------------------------

    def send_job_failure_alert(self, job_name: str, error_message: str, triggered_by: str = 'scheduler'):
        """Send failure alert for a scheduler job."""
        context = AlertContext(
            title=f"Scheduler job failed: {job_name}",
            status='failed',
            error_message=error_message,
            fields={'Job': job_name, 'Triggered by': triggered_by},
        )
        message = self.TEMPLATES['job_failed'].format(
            job_name=job_name, triggered_by=triggered_by, error=error_message
        )
        self._send_to_all(context, message)

    def _send_to_all(self, context: AlertContext, message: str):
        """Send alert to all configured channels."""
        for channel in self.channels:
            if channel.is_configured():
                channel.send(context, message)

    def test_alerts(self) -> Dict[str, bool]:
        """
        Test all alert channels.

        Returns:
            Dictionary of channel_type -> success
        """
        context = AlertContext(title='Test alert', status='warning', error_message='This is a test alert')
        return {
            type(channel).__name__: channel.is_configured() and channel.send(
                context, "This is a test alert from the Fleet Scheduler"
            )
            for channel in self.channels
        }
