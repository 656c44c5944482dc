"""Run notifications.

A notifier is invoked once per completed run, whatever its outcome, and
never lets a delivery problem escape into the pipeline.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import requests

from bastion.data_models import PipelineRun, StageStatus
from bastion.errors import NotificationError
from bastion.events import EventBus, EventEmitter

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"


def build_message(run: PipelineRun) -> str:
    """Human-readable summary: verdict, stage counts, blocking findings, link."""
    verdict = "Passed" if run.passed else "Failed"
    lines: List[str] = [f"Pipeline {verdict}: {run.pipeline_name}", f"Run: {run.run_id}"]
    if run.revision:
        lines.append(f"Revision: {run.revision}")

    counts = run.status_counts()
    lines.append("")
    lines.append("Stages:")
    for status in StageStatus:
        lines.append(f"- {status.value.capitalize()}: {counts[status.value]}")

    blocking = run.blocking_counts()
    if blocking:
        lines.append("")
        lines.append("Blocking findings:")
        for source in sorted(blocking):
            lines.append(f"- {source}: {blocking[source]}")

    failed = [r for r in run.results if r.status == StageStatus.FAILED]
    if failed:
        lines.append("")
        lines.append("Failed stages:")
        for result in failed:
            detail = f" ({result.error})" if result.error else ""
            lines.append(f"- {result.stage_name}{detail}")

    if run.run_url:
        lines.append("")
        lines.append(f"View Workflow: {run.run_url}")

    return "\n".join(lines)


class Notifier(ABC):
    """Base class for run notification channels."""

    channel = "base"

    def __init__(self, event_bus: Optional[EventBus] = None):
        self.event_bus = event_bus

    def notify(self, run: PipelineRun) -> bool:
        """
        Deliver the run summary.

        Returns:
            True if delivered. Delivery errors are logged, never raised.
        """
        emitter = EventEmitter(run.run_id, self.event_bus)
        message = build_message(run)
        try:
            self.send(message)
        except NotificationError as e:
            logger.error(f"[{run.run_id}] Notification via {self.channel} failed: {e}")
            emitter.notification_sent(self.channel, False)
            return False

        logger.info(f"[{run.run_id}] Notification sent via {self.channel} ({run.verdict.value})")
        emitter.notification_sent(self.channel, True)
        return True

    @abstractmethod
    def send(self, message: str) -> None:
        """
        Send one message.

        Raises:
            NotificationError: If the channel rejected or never received it
        """
        pass


class LogNotifier(Notifier):
    """Writes the summary to the log; used when no channel is configured."""

    channel = "log"

    def send(self, message: str) -> None:
        logger.info(f"Pipeline summary:\n{message}")


class TelegramNotifier(Notifier):
    """Sends the summary through the Telegram Bot API."""

    channel = "telegram"

    def __init__(
        self,
        token: str,
        chat_id: str,
        timeout: float = 10.0,
        event_bus: Optional[EventBus] = None,
    ):
        super().__init__(event_bus=event_bus)
        if not token or not chat_id:
            raise ValueError("Telegram notifier requires a bot token and a chat id")
        self.token = token
        self.chat_id = chat_id
        self.timeout = timeout

    def send(self, message: str) -> None:
        url = TELEGRAM_API_URL.format(token=self.token)
        try:
            response = requests.post(
                url,
                data={"chat_id": self.chat_id, "text": message},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            # The token is part of the URL; keep it out of logs
            raise NotificationError(self.channel, str(e).replace(self.token, "***")) from e

    def __repr__(self) -> str:
        return f"TelegramNotifier(chat_id={self.chat_id!r})"
