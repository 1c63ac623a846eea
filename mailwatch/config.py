"""Process configuration — environment variables plus an optional JSON overlay."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from mailwatch.notify.slack import DEFAULT_TEMPLATE
from mailwatch.processing.classifier import DEFAULT_API_URL, DEFAULT_MODEL
from mailwatch.processing.prompts import DEFAULT_PROMPT, PROBLEM_KEYWORDS

logger = logging.getLogger(__name__)

SUMMARY_SOURCES = ("body", "explanation")


class ConfigError(Exception):
    """Raised at startup when a required setting is missing or invalid."""


def _required(*names: str) -> str:
    """Return the first non-empty env var among ``names``; raise if none is set."""
    for name in names:
        value = os.environ.get(name)
        if value:
            return value
    raise ConfigError(f"Missing required env var {' or '.join(names)}")


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s %r; defaulting to %d", name, raw, default)
        return default
    if value <= 0:
        logger.warning("%s must be positive, got %d; defaulting to %d", name, value, default)
        return default
    return value


def _load_overlay(path: Path) -> dict[str, object]:
    """Read prompt/template overrides.  A missing or broken file means defaults."""
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Could not read %s (%s), using defaults", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("%s is not a JSON object, using defaults", path)
        return {}
    return data


@dataclass
class Settings:
    """Everything the watcher needs to run, validated once at startup."""

    ews_url: str
    ews_user: str
    ews_password: str
    slack_token: str
    ntlm_domain: str | None = None
    ntlm_workstation: str | None = None
    folder: str = "inbox"
    poll_interval_minutes: int = 5
    ollama_api: str = DEFAULT_API_URL
    ollama_model: str = DEFAULT_MODEL
    slack_channel: str = "infraestructura"
    prompt: str = DEFAULT_PROMPT
    slack_template: str = DEFAULT_TEMPLATE
    keywords: list[str] = field(default_factory=lambda: list(PROBLEM_KEYWORDS))
    translate_explanation: bool = True
    summary_source: str = "body"
    processed_file: Path = field(default_factory=lambda: Path("processedMails.json"))
    log_dir: Path = field(default_factory=lambda: Path("logs"))

    @classmethod
    def from_env(cls) -> Settings:
        """Build Settings from environment variables and the JSON overlay.

        Raises:
            ConfigError: if a required variable is missing.
        """
        overlay = _load_overlay(Path(os.environ.get("MAILWATCH_CONFIG", "config.json")))

        summary_source = os.environ.get("SUMMARY_SOURCE", "body").lower()
        if summary_source not in SUMMARY_SOURCES:
            raise ConfigError(
                f"SUMMARY_SOURCE must be one of {', '.join(SUMMARY_SOURCES)}, got {summary_source!r}"
            )

        keywords = overlay.get("keywords")
        if not isinstance(keywords, list) or not keywords:
            keywords = list(PROBLEM_KEYWORDS)

        return cls(
            ews_url=_required("EWS_URL"),
            ews_user=_required("EWS_USER", "MAIL_USER"),
            ews_password=_required("EWS_PASS", "MAIL_PASS"),
            slack_token=_required("SLACK_TOKEN"),
            ntlm_domain=os.environ.get("NTLM_DOMAIN") or None,
            ntlm_workstation=os.environ.get("NTLM_WORKSTATION") or None,
            folder=os.environ.get("MAIL_FOLDER") or "inbox",
            poll_interval_minutes=_int_env("POLL_INTERVAL_MINUTES", 5),
            ollama_api=os.environ.get("OLLAMA_API") or DEFAULT_API_URL,
            ollama_model=os.environ.get("OLLAMA_MODEL") or DEFAULT_MODEL,
            slack_channel=os.environ.get("SLACK_CHANNEL") or "infraestructura",
            prompt=str(overlay.get("prompt") or DEFAULT_PROMPT),
            slack_template=str(overlay.get("slackTemplate") or DEFAULT_TEMPLATE),
            keywords=[str(k) for k in keywords],
            translate_explanation=os.environ.get("TRANSLATE_EXPLANATION", "true").lower() == "true",
            summary_source=summary_source,
            processed_file=Path(os.environ.get("PROCESSED_FILE") or "processedMails.json"),
            log_dir=Path(os.environ.get("LOG_DIR") or "logs"),
        )
