"""Slack notifier — renders the alert template and posts it to a channel."""

from __future__ import annotations

import logging
from datetime import datetime

import httpx

logger = logging.getLogger(__name__)

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"

DEFAULT_TEMPLATE = (
    ":rotating_light: *Alerta detectada*\n"
    "*Asunto:* {subject}\n"
    "*Remitente:* {from}\n"
    "*Resumen:* {summary}\n"
    "*Fecha:* {date}"
)


class NotificationError(Exception):
    """Raised internally when Slack rejects or never receives a message."""


def render_alert(
    template: str,
    *,
    subject: str | None,
    sender: str | None,
    date: str | None,
    summary: str | None,
) -> str:
    """Fill the four placeholders, substituting readable fallbacks for blanks."""
    return (
        template.replace("{subject}", subject or "(sin asunto)")
        .replace("{from}", sender or "(desconocido)")
        .replace("{date}", date or datetime.now().isoformat(timespec="seconds"))
        .replace("{summary}", summary or "(sin resumen)")
    )


class SlackNotifier:
    """Posts alert messages via chat.postMessage.

    ``notify`` never raises: delivery failures are logged and dropped so one
    Slack outage cannot stall the mailbox cycle.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        token: str,
        channel: str,
        template: str = DEFAULT_TEMPLATE,
        *,
        api_url: str = SLACK_POST_MESSAGE_URL,
    ) -> None:
        self._http = http
        self._token = token
        self._channel = channel
        self._template = template
        self._api_url = api_url

    async def notify(self, *, subject: str, sender: str, date: str, summary: str) -> bool:
        """Send one alert.  Returns True on delivery, False if it was dropped."""
        text = render_alert(
            self._template, subject=subject, sender=sender, date=date, summary=summary
        )
        try:
            await self._post(text)
        except NotificationError as exc:
            logger.error("Slack notification failed for %r: %s", subject, exc)
            return False
        logger.info("Slack alert sent for %r", subject)
        return True

    async def _post(self, text: str) -> None:
        try:
            response = await self._http.post(
                self._api_url,
                headers={"Authorization": f"Bearer {self._token}"},
                json={"channel": self._channel, "text": text, "mrkdwn": True},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise NotificationError(str(exc)) from exc
        except ValueError as exc:
            raise NotificationError(f"invalid JSON from Slack: {exc}") from exc

        if not isinstance(data, dict) or not data.get("ok"):
            error = data.get("error", "unknown_error") if isinstance(data, dict) else data
            raise NotificationError(f"Slack API error: {error}")
