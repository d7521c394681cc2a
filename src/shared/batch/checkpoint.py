"""Durable JSON checkpoint store with atomic writes."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WriteResult:
    """Outcome of a best-effort persistence call.

    Side-effecting writes never raise into the pipeline; callers receive this
    result and decide whether to look at it.
    """

    ok: bool
    target: str
    error: Optional[str] = None

    @classmethod
    def success(cls, target: str) -> "WriteResult":
        return cls(ok=True, target=target)

    @classmethod
    def failure(cls, target: str, error: BaseException | str) -> "WriteResult":
        return cls(ok=False, target=target, error=str(error))


class CheckpointStore:
    """Keeps the latest state of every record and a project snapshot on disk.

    Two sections live in one JSON document:

    * ``records``: per-record checkpoints keyed by ``id``, written after every
      transition via :meth:`put`.
    * ``project``: an ordered full snapshot written by :meth:`save_project`.

    Example:
        store = CheckpointStore("./checkpoints/deck.json")
        store.put({"id": "abc", "status": "analyzed"})
        records = store.get_all()
    """

    CHECKPOINT_VERSION = "2.0"

    def __init__(self, filepath: str | Path):
        """Initialize checkpoint store.

        Args:
            filepath: Path to checkpoint JSON file
        """
        self.filepath = Path(filepath)
        self.lock = threading.Lock()
        self.data: Dict[str, Any] = self._empty()
        self._load()

    @classmethod
    def _empty(cls) -> Dict[str, Any]:
        now = datetime.now(timezone.utc).isoformat()
        return {
            "version": cls.CHECKPOINT_VERSION,
            "created_at": now,
            "last_updated": now,
            "records": {},
            "project": None,
        }

    def _load(self) -> None:
        """Load checkpoint from file if exists."""
        if not self.filepath.exists():
            return
        try:
            with open(self.filepath, "r", encoding="utf-8") as f:
                loaded = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load checkpoint %s: %s", self.filepath, e)
            return

        if loaded.get("version") != self.CHECKPOINT_VERSION:
            logger.warning("Checkpoint version mismatch, starting fresh")
            return

        self.data = loaded
        logger.info(
            "Loaded checkpoint from %s (%d records)",
            self.filepath,
            len(self.data.get("records", {})),
        )

    def put(self, record: Mapping[str, Any]) -> WriteResult:
        """Checkpoint a single record and flush to disk.

        Args:
            record: JSON-compatible mapping with an ``id`` key
        """
        record_id = record.get("id")
        if not record_id:
            return WriteResult.failure(str(self.filepath), "record is missing an id")

        with self.lock:
            self.data["records"][str(record_id)] = dict(record)
            self._touch()
        return self.flush()

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        with self.lock:
            record = self.data["records"].get(record_id)
            return dict(record) if record is not None else None

    def get_all(self) -> List[Dict[str, Any]]:
        """Return every checkpointed record.

        Records are ordered by their ``pageIndex`` when present, otherwise by
        insertion order.
        """
        with self.lock:
            records = [dict(r) for r in self.data["records"].values()]
        return sorted(records, key=lambda r: r.get("pageIndex", 0))

    def save_project(self, records: List[Mapping[str, Any]]) -> WriteResult:
        """Write a full ordered snapshot and refresh per-record checkpoints."""
        with self.lock:
            snapshot = [dict(r) for r in records]
            self.data["project"] = {
                "records": snapshot,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }
            for record in snapshot:
                if record.get("id"):
                    self.data["records"][str(record["id"])] = record
            self._touch()
        return self.flush()

    def load_project(self) -> Optional[List[Dict[str, Any]]]:
        """Return the most complete view of the saved project.

        Per-record checkpoints are newer than the last snapshot, so they win
        over snapshot entries with the same id.
        """
        with self.lock:
            project = self.data.get("project")
            records = dict(self.data["records"])

        if not project and not records:
            return None

        merged: Dict[str, Dict[str, Any]] = {}
        for record in (project or {}).get("records", []):
            merged[str(record.get("id"))] = dict(record)
        for record_id, record in records.items():
            merged[record_id] = dict(record)
        return sorted(merged.values(), key=lambda r: r.get("pageIndex", 0))

    def flush(self) -> WriteResult:
        """Atomically write checkpoint to disk."""
        with self.lock:
            try:
                self.filepath.parent.mkdir(parents=True, exist_ok=True)
                temp_path = self.filepath.with_suffix(".tmp")
                with open(temp_path, "w", encoding="utf-8") as f:
                    json.dump(self.data, f, indent=2)

                temp_path.replace(self.filepath)
                logger.debug("Checkpoint flushed to %s", self.filepath)
                return WriteResult.success(str(self.filepath))
            except (OSError, TypeError, ValueError) as e:
                logger.error("Failed to flush checkpoint: %s", e)
                return WriteResult.failure(str(self.filepath), e)

    def get_stats(self) -> Dict[str, Any]:
        """Get checkpoint statistics grouped by record status."""
        with self.lock:
            records = list(self.data["records"].values())
            status_counts: Dict[str, int] = {}
            for record in records:
                status = str(record.get("status", "unknown"))
                status_counts[status] = status_counts.get(status, 0) + 1

            return {
                "total_records": len(records),
                "status_counts": status_counts,
                "created_at": self.data.get("created_at"),
                "last_updated": self.data.get("last_updated"),
            }

    def clear(self) -> WriteResult:
        """Clear all checkpoint data."""
        with self.lock:
            self.data = self._empty()
            logger.info("Checkpoint cleared")
        return self.flush()

    def _touch(self) -> None:
        self.data["last_updated"] = datetime.now(timezone.utc).isoformat()
