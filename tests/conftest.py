"""Shared pytest fixtures."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from mailwatch.ews.types import MessageCandidate, MessageDetail
from mailwatch.storage.dedup import DedupStore


@pytest.fixture
def store(tmp_path: Path) -> DedupStore:
    """An empty dedup store backed by a file in a temp directory."""
    return DedupStore(tmp_path / "processedMails.json")


@pytest.fixture
def sample_candidate() -> MessageCandidate:
    return MessageCandidate(
        id="M1",
        change_key="CK-find",
        subject="Reporte nocturno",
        sender="monitor@example.com",
        received_at=datetime(2026, 2, 27, 9, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def sample_detail() -> MessageDetail:
    return MessageDetail(
        id="M1",
        change_key="CK-get",
        subject="Reporte nocturno",
        sender="monitor@example.com",
        received_at=datetime(2026, 2, 27, 9, 0, tzinfo=timezone.utc),
        recipients=["ops@example.com"],
        body_text="El servicio no responde, error 503",
    )
