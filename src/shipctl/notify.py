"""
Console and Slack notification sink.

Workflows report progress through ``log(message)`` and outcomes through
``notify(kind, message)``. Messages are echoed to the console and, when a
webhook URL is configured, posted to a Slack incoming webhook.
"""
import logging
from typing import Optional, Dict, Any, IO

import click
import requests

logger = logging.getLogger(__name__)

SUCCESS = "success"
FAILURE = "failure"

# Slack attachment colours per notification kind
KIND_COLORS = {
    SUCCESS: "good",
    FAILURE: "danger",
}

SLACK_TIMEOUT_SECONDS = 10


class Notifier:
    """Delivers workflow messages to the console and an optional Slack webhook."""

    def __init__(self, cluster: str, service_name: str,
                 slack_webhook_url: Optional[str] = None,
                 out: Optional[IO] = None,
                 username: str = "deploy-bot",
                 session: Optional[requests.Session] = None):
        self.cluster = cluster
        self.service_name = service_name
        self.slack_webhook_url = slack_webhook_url
        self.out = out
        self.username = username
        self.session = session or requests.Session()

    def log(self, message: str) -> None:
        """Emit a plain progress message."""
        self._echo(message)
        if self.slack_webhook_url:
            self._post({
                "username": self.username,
                "text": self._with_context(message),
            })

    def notify(self, kind: str, message: str) -> None:
        """Emit a leveled message; ``kind`` is ``success`` or ``failure``."""
        if kind not in KIND_COLORS:
            self.log(message)
            return

        self._echo(message)
        if self.slack_webhook_url:
            self._post({
                "username": self.username,
                "attachments": [
                    {
                        "color": KIND_COLORS[kind],
                        "text": self._with_context(message),
                    }
                ],
            })

    def success(self, message: str) -> None:
        self.notify(SUCCESS, message)

    def fail(self, message: str) -> None:
        self.notify(FAILURE, message)

    def _with_context(self, message: str) -> str:
        return f"cluster: {self.cluster}, serviceName: {self.service_name}\n{message}"

    def _echo(self, message: str) -> None:
        click.echo(message.rstrip("\n"), file=self.out)

    def _post(self, payload: Dict[str, Any]) -> None:
        # Delivery problems never abort a rollout
        try:
            response = self.session.post(
                self.slack_webhook_url,
                json=payload,
                timeout=SLACK_TIMEOUT_SECONDS
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning(f"Failed to post Slack notification: {e}")
