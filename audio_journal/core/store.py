"""
SQLite blob store for AudioJournal.
One opaque text blob per key; each collection is fully replaced on save.
Thread-safe via check_same_thread=False + explicit locking.
"""

import json
import sqlite3
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path

from audio_journal.core.constants import STORE_PATH, STORE_KEY_SUMMARIES
from audio_journal.core.models import SummaryResult
from audio_journal.core.ports import BlobStore

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS blobs (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT
);
"""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteBlobStore(BlobStore):
    """Key/value blob table in a local SQLite database."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or STORE_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._migrate()

    def _migrate(self):
        with self._lock:
            cur = self.conn.cursor()
            cur.executescript(_CREATE_TABLES)
            cur.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (_SCHEMA_VERSION,),
            )
            self.conn.commit()

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None

    def get(self, key: str) -> str | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT value FROM blobs WHERE key = ?", (key,)
            ).fetchone()
        return row[0] if row else None

    def set(self, key: str, blob: str) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT OR REPLACE INTO blobs (key, value, updated_at) VALUES (?, ?, ?)",
                (key, blob, utc_now()),
            )
            self.conn.commit()

    def delete(self, key: str) -> None:
        with self._lock:
            self.conn.execute("DELETE FROM blobs WHERE key = ?", (key,))
            self.conn.commit()

    def keys(self) -> list[str]:
        with self._lock:
            rows = self.conn.execute("SELECT key FROM blobs ORDER BY key").fetchall()
        return [r[0] for r in rows]


def load_json(store: BlobStore, key: str, default):
    """Read a JSON blob, falling back to default when missing or corrupt."""
    blob = store.get(key)
    if blob is None:
        return default
    try:
        return json.loads(blob)
    except ValueError as e:
        logger.warning("Corrupt blob under %r, ignoring: %s", key, e)
        return default


def save_json(store: BlobStore, key: str, value):
    store.set(key, json.dumps(value))


class SummaryStore:
    """Summary collection keyed by recording id; one summary per recording."""

    def __init__(self, store: BlobStore):
        self.store = store
        self._lock = threading.Lock()

    def _load(self) -> dict[str, SummaryResult]:
        summaries = {}
        for item in load_json(self.store, STORE_KEY_SUMMARIES, []):
            try:
                summary = SummaryResult.from_dict(item)
            except (TypeError, KeyError) as e:
                logger.warning("Skipping unreadable stored summary: %s", e)
                continue
            summaries[summary.recording_id] = summary
        return summaries

    def _save(self, summaries: dict[str, SummaryResult]):
        save_json(self.store, STORE_KEY_SUMMARIES, [s.to_dict() for s in summaries.values()])

    def save(self, summary: SummaryResult):
        """Store summary, replacing any previous one for the same recording."""
        with self._lock:
            summaries = self._load()
            summaries[summary.recording_id] = summary
            self._save(summaries)
        logger.info("Saved summary for %s (%s)", summary.recording_id, summary.engine_name)

    def get(self, recording_id: str) -> SummaryResult | None:
        with self._lock:
            return self._load().get(recording_id)

    def all(self) -> list[SummaryResult]:
        with self._lock:
            return list(self._load().values())

    def delete(self, recording_id: str) -> bool:
        with self._lock:
            summaries = self._load()
            if recording_id not in summaries:
                return False
            del summaries[recording_id]
            self._save(summaries)
            return True

    def rename(self, old_id: str, new_id: str, new_name: str) -> bool:
        with self._lock:
            summaries = self._load()
            summary = summaries.pop(old_id, None)
            if summary is None:
                return False
            summary.recording_id = new_id
            summary.recording_name = new_name
            summaries[new_id] = summary
            self._save(summaries)
            return True
