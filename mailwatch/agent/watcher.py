"""Mailbox sync loop — finds unread mail, classifies it, alerts, marks read, records."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

import httpx
from dotenv import load_dotenv

from mailwatch.config import ConfigError, Settings
from mailwatch.ews.client import EwsClient, EwsCredentials, ProtocolError, ews_client
from mailwatch.ews.types import MessageCandidate, MessageDetail
from mailwatch.processing.classifier import InferenceError, MessageClassifier
from mailwatch.processing.prompts import build_analysis_text
from mailwatch.processing.types import ClassificationResult
from mailwatch.storage.dedup import DedupStore

logger = logging.getLogger(__name__)

#: Maximum characters of body or explanation sent in an alert.
SUMMARY_CHAR_LIMIT = 300


class MessageState(str, Enum):
    """Where a message ended up in one pass of the pipeline."""

    DISCOVERED = "discovered"
    DEDUP_CHECKED = "dedup_checked"
    DETAILED = "detailed"
    CLASSIFIED = "classified"
    NOTIFIED = "notified"
    MARKED_READ = "marked_read"
    RECORDED = "recorded"
    SKIPPED = "skipped"
    DETAIL_FAILED = "detail_failed"
    CLASSIFY_FAILED = "classify_failed"


def _trace(message_id: str, state: MessageState) -> None:
    logger.debug("message=%s state=%s", message_id, state.value)


# ── Collaborator interfaces ────────────────────────────────────────────────────


class Notifier(Protocol):
    """Outbound alert channel.  Implementations must not raise."""

    async def notify(self, *, subject: str, sender: str, date: str, summary: str) -> bool:
        ...


class Classifier(Protocol):
    async def classify(self, content: str) -> ClassificationResult:
        ...


@dataclass
class CycleReport:
    """Per-cycle counters, logged at the end of every run."""

    found: int = 0
    skipped: int = 0
    alerts: int = 0
    recorded: int = 0
    failed: int = 0
    error: str | None = None


# ── Watcher ────────────────────────────────────────────────────────────────────


class MailboxWatcher:
    """Runs the sync pipeline over one folder, one message at a time.

    Per message: skip if read or already recorded → fetch detail → classify →
    alert on ALERT → mark read → record in the dedup store.  The dedup record
    is the commit point; a failed mark-read still records so the message is
    not reprocessed forever.  Detail or classification failures leave the
    message unrecorded so the next cycle retries it.

    Cycles never overlap: a cycle requested while one is running is skipped.

    Usage::

        watcher = MailboxWatcher(ews, classifier, notifier, store, folder="inbox")
        report = await watcher.run_cycle()
    """

    def __init__(
        self,
        ews: EwsClient,
        classifier: Classifier,
        notifier: Notifier,
        store: DedupStore,
        *,
        folder: str = "inbox",
        summary_source: str = "body",
    ) -> None:
        self._ews = ews
        self._classifier = classifier
        self._notifier = notifier
        self._store = store
        self._folder = folder
        self._summary_source = summary_source
        self._cycle_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()

    def stop(self) -> None:
        """Signal run() to finish the current cycle and shut down cleanly."""
        logger.info("Shutdown requested — finishing current cycle then stopping")
        self._stop_event.set()

    async def run(self, poll_interval_minutes: int) -> None:
        """Run one cycle now, then every ``poll_interval_minutes`` until stop()."""
        from mailwatch.agent.scheduler import create_poll_scheduler

        await self.run_cycle()

        scheduler = create_poll_scheduler(self, poll_interval_minutes)
        scheduler.start()
        try:
            await self._stop_event.wait()
        finally:
            scheduler.shutdown(wait=False)
            # let an in-flight cycle finish its current commit
            async with self._cycle_lock:
                pass
        logger.info("Watcher stopped")

    async def run_cycle(self) -> CycleReport | None:
        """Process every current candidate once.  Never raises.

        Returns None when another cycle is still running.
        """
        if self._cycle_lock.locked():
            logger.warning("Previous cycle still running — skipping this trigger")
            return None

        async with self._cycle_lock:
            report = CycleReport()
            try:
                candidates = await self._ews.find_unread_candidates(self._folder)
            except ProtocolError as exc:
                logger.error("Mailbox query failed: %s", exc)
                report.error = str(exc)
                return report
            except Exception as exc:  # noqa: BLE001
                logger.error("Unexpected error querying mailbox: %s", exc, exc_info=True)
                report.error = str(exc)
                return report

            report.found = len(candidates)
            logger.info("Cycle: %d unread candidate(s) in %s", len(candidates), self._folder)

            for candidate in candidates:
                try:
                    state = await self._handle(candidate, report)
                except Exception as exc:  # noqa: BLE001
                    logger.error(
                        "Pipeline failed on message %s: %s",
                        candidate.id,
                        exc,
                        exc_info=True,
                    )
                    report.failed += 1
                    continue
                self._count(report, state)

            logger.info(
                "Cycle done: found=%d skipped=%d recorded=%d alerts=%d failed=%d",
                report.found,
                report.skipped,
                report.recorded,
                report.alerts,
                report.failed,
            )
            return report

    # ── Internal ───────────────────────────────────────────────────────────────

    @staticmethod
    def _count(report: CycleReport, state: MessageState) -> None:
        if state is MessageState.SKIPPED:
            report.skipped += 1
        elif state is MessageState.RECORDED:
            report.recorded += 1
        else:
            report.failed += 1

    async def _handle(self, candidate: MessageCandidate, report: CycleReport) -> MessageState:
        """Drive one candidate through the pipeline and return its final state."""
        _trace(candidate.id, MessageState.DISCOVERED)
        if candidate.is_read:
            logger.debug("Message %s already read on server — skipping", candidate.id)
            return MessageState.SKIPPED
        if self._store.contains(candidate.id):
            logger.debug("Message %s already processed — skipping", candidate.id)
            return MessageState.SKIPPED
        _trace(candidate.id, MessageState.DEDUP_CHECKED)

        try:
            detail = await self._ews.fetch_detail(candidate.id, candidate.change_key)
        except ProtocolError as exc:
            logger.error("Could not fetch message %s: %s", candidate.id, exc)
            return MessageState.DETAIL_FAILED
        _trace(candidate.id, MessageState.DETAILED)

        logger.info(
            "Analysing message %s — %r from %s to %s",
            candidate.id,
            detail.subject,
            detail.sender,
            ", ".join(detail.recipients) or "unknown",
        )
        try:
            result = await self._classifier.classify(build_analysis_text(detail))
        except InferenceError as exc:
            logger.error("Classification failed for message %s: %s", candidate.id, exc)
            return MessageState.CLASSIFY_FAILED
        _trace(candidate.id, MessageState.CLASSIFIED)

        if result.is_alert:
            await self._notifier.notify(
                subject=detail.subject,
                sender=detail.sender,
                date=detail.display_date,
                summary=self._summary(detail, result),
            )
            report.alerts += 1
            logger.info("ALERT raised for message %s", candidate.id)
            _trace(candidate.id, MessageState.NOTIFIED)
        else:
            logger.info("Message %s classified OK", candidate.id)

        # the change key from GetItem is the freshest one we have
        try:
            await self._ews.mark_read(candidate.id, detail.change_key)
            logger.info("Message %s marked as read", candidate.id)
            _trace(candidate.id, MessageState.MARKED_READ)
        except ProtocolError as exc:
            logger.error("Could not mark message %s as read: %s", candidate.id, exc)

        self._store.add(candidate.id)
        _trace(candidate.id, MessageState.RECORDED)
        return MessageState.RECORDED

    def _summary(self, detail: MessageDetail, result: ClassificationResult) -> str:
        text = result.explanation if self._summary_source == "explanation" else detail.body_text
        if len(text) > SUMMARY_CHAR_LIMIT:
            return text[:SUMMARY_CHAR_LIMIT] + "…"
        return text


# ── Wiring ─────────────────────────────────────────────────────────────────────


@asynccontextmanager
async def open_watcher(settings: Settings) -> AsyncIterator[MailboxWatcher]:
    """Build a MailboxWatcher with live EWS, Ollama and Slack clients."""
    from mailwatch.notify.slack import SlackNotifier

    store = DedupStore.load(settings.processed_file)
    credentials = EwsCredentials(
        username=settings.ews_user,
        password=settings.ews_password,
        domain=settings.ntlm_domain,
        workstation=settings.ntlm_workstation,
    )
    async with ews_client(settings.ews_url, credentials) as ews, httpx.AsyncClient(
        timeout=30.0
    ) as http:
        classifier = MessageClassifier(
            http,
            api_url=settings.ollama_api,
            model=settings.ollama_model,
            prompt_template=settings.prompt,
            keywords=settings.keywords,
            translate=settings.translate_explanation,
        )
        notifier = SlackNotifier(
            http, settings.slack_token, settings.slack_channel, settings.slack_template
        )
        yield MailboxWatcher(
            ews,
            classifier,
            notifier,
            store,
            folder=settings.folder,
            summary_source=settings.summary_source,
        )


def configure_logging(log_dir: Path | None = None, level: int = logging.INFO) -> None:
    """Log to the console and, if ``log_dir`` is given, to ``log_dir/mailwatch.log``."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "mailwatch.log", encoding="utf-8"))
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ── Entry point ────────────────────────────────────────────────────────────────


def main() -> None:
    """Start the watcher.  Called by `python -m mailwatch` and `mailwatch run`."""
    load_dotenv()

    try:
        settings = Settings.from_env()
    except ConfigError as exc:
        configure_logging()
        logger.critical("Fatal configuration error: %s", exc)
        sys.exit(1)

    configure_logging(settings.log_dir)
    logger.info("mailwatch starting")

    try:
        asyncio.run(_amain(settings))
    except KeyboardInterrupt:
        # Ctrl+C on Windows (no add_signal_handler) arrives here
        logger.info("Interrupted — goodbye")


async def _amain(settings: Settings) -> None:
    """Async entry point: wire up signal handlers and run the watcher."""
    async with open_watcher(settings) as watcher:
        loop = asyncio.get_running_loop()
        try:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, watcher.stop)
        except (NotImplementedError, AttributeError):
            pass

        await watcher.run(settings.poll_interval_minutes)
