"""JSON-file dedup store — ids of messages already fully processed."""

import json
import logging
import os
import warnings
from collections.abc import Iterator
from pathlib import Path

logger = logging.getLogger(__name__)

_DEFAULT_PATH = Path("processedMails.json")


class PersistenceWarning(UserWarning):
    """The dedup file was missing or unreadable; the store starts empty."""


class DedupStore:
    """Persisted set of message ids, written through on every change.

    The in-memory set is the source of truth while the process runs.  Each
    ``add`` rewrites the whole file (ordered JSON list) before returning, so a
    crash loses at most the message being processed at that moment.

    Designed for single-threaded use from the watcher's event loop.

    Usage::

        store = DedupStore.load(Path("processedMails.json"))
        if not store.contains(msg_id):
            ...
            store.add(msg_id)
    """

    def __init__(self, path: str | Path = _DEFAULT_PATH, ids: list[str] | None = None) -> None:
        self._path = Path(path)
        # dict keeps insertion order, giving a stable file layout
        self._ids: dict[str, None] = dict.fromkeys(ids or [])

    @classmethod
    def load(cls, path: str | Path = _DEFAULT_PATH) -> "DedupStore":
        """Read the store from disk.  Missing or corrupt files yield an empty store."""
        path = Path(path)
        if not path.exists():
            _warn(f"Dedup file {path} not found, starting with an empty store")
            return cls(path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            _warn(f"Could not read dedup file {path} ({exc}), starting with an empty store")
            return cls(path)
        if not isinstance(raw, list):
            _warn(f"Dedup file {path} is not a JSON list, starting with an empty store")
            return cls(path)

        store = cls(path, [str(i) for i in raw])
        logger.info("Loaded %d processed message id(s) from %s", len(store), path)
        return store

    @property
    def path(self) -> Path:
        return self._path

    def contains(self, message_id: str) -> bool:
        return message_id in self._ids

    def add(self, message_id: str) -> None:
        """Record an id and flush the full set to disk immediately.

        The id only joins the in-memory set once the file write succeeded.
        """
        if message_id in self._ids:
            return
        self._write([*self._ids, message_id])
        self._ids[message_id] = None

    def discard(self, message_id: str) -> bool:
        """Forget an id so it is processed again.  Returns False if it was absent."""
        if message_id not in self._ids:
            return False
        self._write([i for i in self._ids if i != message_id])
        del self._ids[message_id]
        return True

    def flush(self) -> None:
        """Overwrite the backing file with the complete current set."""
        self._write(list(self._ids))

    def _write(self, ids: list[str]) -> None:
        # sibling temp file renamed over the target; readers never see a half-written list
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(self._path.name + ".tmp")
        tmp.write_text(json.dumps(ids, indent=2), encoding="utf-8")
        os.replace(tmp, self._path)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._ids))

    def __len__(self) -> int:
        return len(self._ids)


def _warn(message: str) -> None:
    logger.warning(message)
    warnings.warn(message, PersistenceWarning, stacklevel=3)
