"""Notification events, sinks and delivery.

The workflow engine writes events to a sink and never waits on delivery.
Sinks:
- InMemoryNotificationSink: outbox queue, drained by the caller
- BufferedNotificationSink: holds events until the owning write commits
- DatabaseNotificationSink: stores events as project notification rows

NotificationDispatcher delivers stored events to Slack and email.
Delivery failures are logged and swallowed.
"""

import logging
import smtplib
from collections import deque
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol

import httpx
from jinja2 import Template
from pydantic import BaseModel, ConfigDict, Field

from sentinel.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class NotificationEventType(str, Enum):
    """Events that can trigger project notifications."""
    DELIVERABLE_ADDED = "deliverable_added"
    DELIVERABLE_UPDATED = "deliverable_updated"
    MILESTONE_COMPLETED = "milestone_completed"
    REVISION_ADDED = "revision_added"
    COMMENT_ADDED = "comment_added"


class NotificationChannel(str, Enum):
    STORE = "store"
    SLACK = "slack"
    EMAIL = "email"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationEvent(BaseModel):
    """A single outbound project notification."""
    model_config = ConfigDict(frozen=True)

    project_id: str
    type: NotificationEventType
    actor_id: str
    actor_name: str
    message: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


class NotificationSink(Protocol):
    """Anything the engine can hand events to."""

    def emit(self, event: NotificationEvent) -> None:
        ...


class InMemoryNotificationSink:
    """Outbox queue kept in memory."""

    def __init__(self) -> None:
        self._queue: Deque[NotificationEvent] = deque()

    def emit(self, event: NotificationEvent) -> None:
        self._queue.append(event)

    @property
    def events(self) -> List[NotificationEvent]:
        return list(self._queue)

    def drain(self) -> List[NotificationEvent]:
        """Return and remove every queued event."""
        drained = list(self._queue)
        self._queue.clear()
        return drained

    def __len__(self) -> int:
        return len(self._queue)


class BufferedNotificationSink:
    """Holds events until flush() forwards them to the target sink."""

    def __init__(self, target: NotificationSink) -> None:
        self.target = target
        self._pending: List[NotificationEvent] = []

    def emit(self, event: NotificationEvent) -> None:
        self._pending.append(event)

    @property
    def pending(self) -> List[NotificationEvent]:
        return list(self._pending)

    def discard(self) -> None:
        self._pending.clear()

    def flush(self) -> int:
        """Forward pending events. A failing target never raises to the caller."""
        pending, self._pending = self._pending, []
        for event in pending:
            try:
                self.target.emit(event)
            except Exception:
                logger.exception("Failed to forward %s notification for project %s",
                                 event.type.value, event.project_id)
        return len(pending)


class DatabaseNotificationSink:
    """Stores events as ProjectNotification rows in the caller's session."""

    def __init__(self, db) -> None:
        self.db = db

    def emit(self, event: NotificationEvent) -> None:
        from sentinel.db.models.notification import ProjectNotification

        self.db.add(ProjectNotification(
            project_id=event.project_id,
            type=event.type.value,
            user_id=event.actor_id,
            user_name=event.actor_name,
            message=event.message,
            extra_data=dict(event.metadata),
            created_at=event.created_at,
        ))


# Email templates (Jinja2)
EMAIL_SUBJECTS = {
    NotificationEventType.DELIVERABLE_ADDED: "[Scope Sentinel] New deliverable: {{ deliverable_name }}",
    NotificationEventType.DELIVERABLE_UPDATED: "[Scope Sentinel] Deliverable updated: {{ deliverable_name }}",
    NotificationEventType.MILESTONE_COMPLETED: "[Scope Sentinel] Milestone completed: {{ milestone_name }}",
    NotificationEventType.REVISION_ADDED: "[Scope Sentinel] New revision: {{ deliverable_name }}",
    NotificationEventType.COMMENT_ADDED: "[Scope Sentinel] New comment: {{ deliverable_name }}",
}

EMAIL_BODY = """
{{ message }}

Project: {{ project_id }}
{% if status %}Status: {{ status }}
{% endif %}{% if comment %}Comment: {{ comment }}
{% endif %}
View the project at: {{ project_url }}

---
{{ app_name }}
"""


class NotificationDispatcher:
    """
    Delivers notification events to the configured external channels.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        http_client: Optional[httpx.Client] = None,
        smtp_factory: Optional[Callable[[str, int], smtplib.SMTP]] = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            settings: Settings to read channels and credentials from
            http_client: Client used for webhook delivery
            smtp_factory: Callable returning an SMTP connection
        """
        self.settings = settings or get_settings()
        self._http_client = http_client
        self._smtp_factory = smtp_factory or smtplib.SMTP

    def dispatch(self, event: NotificationEvent) -> Dict[str, str]:
        """
        Deliver an event to every external channel.

        Returns:
            Mapping of channel name to "sent", "failed" or "skipped"
        """
        results: Dict[str, str] = {}
        channels = self.settings.notification_channels_list

        if NotificationChannel.SLACK.value in channels:
            results[NotificationChannel.SLACK.value] = self._attempt(
                NotificationChannel.SLACK, event, self._send_slack
            )
        if NotificationChannel.EMAIL.value in channels:
            results[NotificationChannel.EMAIL.value] = self._attempt(
                NotificationChannel.EMAIL, event, self._send_email
            )
        return results

    def _attempt(self, channel: NotificationChannel, event: NotificationEvent, send) -> str:
        try:
            delivered = send(event)
        except Exception:
            logger.exception("Failed to deliver %s notification via %s", event.type.value, channel.value)
            return "failed"
        return "sent" if delivered else "skipped"

    def _send_slack(self, event: NotificationEvent) -> bool:
        if not self.settings.slack_webhook_url:
            logger.warning("Slack webhook not configured, skipping delivery")
            return False

        payload = self.build_slack_payload(event)
        if self._http_client is not None:
            response = self._http_client.post(self.settings.slack_webhook_url, json=payload)
            response.raise_for_status()
            return True

        with httpx.Client(timeout=self.settings.webhook_timeout) as client:
            response = client.post(self.settings.slack_webhook_url, json=payload)
            response.raise_for_status()
        return True

    def _send_email(self, event: NotificationEvent) -> bool:
        recipients = self.settings.notification_emails_list
        if not recipients:
            return False
        if not self.settings.smtp_host:
            logger.warning("SMTP not configured, skipping email delivery")
            return False

        subject, body = self.render_email(event)
        msg = MIMEMultipart()
        msg["From"] = f"{self.settings.smtp_from_name} <{self.settings.smtp_from_email}>"
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))

        with self._smtp_factory(self.settings.smtp_host, self.settings.smtp_port) as server:
            if self.settings.smtp_use_tls:
                server.starttls()
            if self.settings.smtp_user:
                server.login(self.settings.smtp_user, self.settings.smtp_password)
            server.send_message(msg)
        return True

    def build_slack_payload(self, event: NotificationEvent) -> Dict[str, Any]:
        """Build a Block Kit message for an event."""
        title = event.type.value.replace("_", " ").capitalize()
        return {
            "blocks": [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": title, "emoji": True},
                },
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": event.message},
                },
                {
                    "type": "context",
                    "elements": [
                        {"type": "mrkdwn", "text": f"Project: {event.project_id}"},
                    ],
                },
            ]
        }

    def render_email(self, event: NotificationEvent) -> tuple[str, str]:
        context = {
            "deliverable_name": "",
            "milestone_name": "",
            **event.metadata,
            "message": event.message,
            "project_id": event.project_id,
            "project_url": f"{self.settings.public_url}/projects/{event.project_id}",
            "app_name": self.settings.app_name,
        }
        subject = Template(EMAIL_SUBJECTS[event.type]).render(**context)
        body = Template(EMAIL_BODY).render(**context)
        return subject, body.strip() + "\n"
