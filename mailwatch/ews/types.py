"""Data types shared across the EWS client modules."""

from dataclasses import dataclass, field
from datetime import datetime

#: Human-facing timestamp format used in alerts and analysis text.
DISPLAY_DATE_FORMAT = "%d/%m/%Y %H:%M:%S"


def format_display_date(value: datetime) -> str:
    """Render a timestamp in local time as DD/MM/YYYY HH:mm:ss."""
    return value.astimezone().strftime(DISPLAY_DATE_FORMAT)


@dataclass(frozen=True)
class MessageCandidate:
    """An unread message as returned by a FindItem folder query.

    ``change_key`` is only valid for the response it came from.  Anything that
    updates the message must use a change key from a fresh GetItem call.
    """

    id: str
    change_key: str
    subject: str
    sender: str
    received_at: datetime
    is_read: bool = False


@dataclass(frozen=True)
class MessageDetail:
    """Full properties of one message, including the plain-text body."""

    id: str
    change_key: str
    subject: str
    sender: str
    received_at: datetime
    recipients: list[str] = field(default_factory=list)
    body_text: str = ""

    @property
    def display_date(self) -> str:
        return format_display_date(self.received_at)
