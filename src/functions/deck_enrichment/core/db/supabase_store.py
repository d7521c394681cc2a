"""Supabase-backed media storage, task log and debounced deck mirror."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from src.shared.batch.checkpoint import WriteResult

from ..config import SupabaseConfig
from ..contracts import Unit, VideoPlacement
from ..media import decode_data_uri, mime_type_for, to_data_uri

logger = logging.getLogger(__name__)


def slide_image_path(unit_id: str) -> str:
    return f"slides/{unit_id}_bg.png"


def asset_image_path(unit_id: str, asset_id: str) -> str:
    return f"slides/{unit_id}_asset_{asset_id}.png"


def video_path(unit_id: str, placement: VideoPlacement) -> str:
    return f"videos/{unit_id}_{placement.value}.mp4"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _raise_for_error(response: Any) -> None:
    if isinstance(response, dict) and response.get("error"):
        raise RuntimeError(str(response["error"]))
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(str(error))


class SupabaseMediaStore:
    """Uploads generated media to a public bucket, reads it back and records task rows.

    No method raises: an upload failure returns ``None`` so the caller
    keeps the inline data URI, and a task-log failure comes back as a failed
    :class:`WriteResult`.
    """

    def __init__(self, client: Any, config: SupabaseConfig) -> None:
        self.client = client
        self.config = config

    def public_url(self, path: str) -> str:
        return f"{self.config.url.rstrip('/')}/storage/v1/object/public/{self.config.bucket}/{path}"

    async def upload(self, path: str, data_uri: str) -> Optional[str]:
        try:
            data, content_type = decode_data_uri(data_uri)
        except ValueError as exc:
            logger.warning("Skipping upload to %s: %s", path, exc)
            return None

        def _upload() -> str:
            logger.info("Uploading media to Supabase path %s", path)
            response = self.client.storage.from_(self.config.bucket).upload(
                path=path,
                file=data,
                file_options={"contentType": content_type, "upsert": "true"},
            )
            _raise_for_error(response)
            return self.public_url(path)

        try:
            return await asyncio.to_thread(_upload)
        except Exception as exc:  # noqa: BLE001
            logger.error("Supabase upload to %s failed: %s", path, exc)
            return None

    async def download(self, path: str) -> Optional[str]:
        """Fetch a stored object back as a data URI; ``None`` when it cannot be read."""

        def _download() -> bytes:
            return self.client.storage.from_(self.config.bucket).download(path)

        try:
            data = await asyncio.to_thread(_download)
        except Exception as exc:  # noqa: BLE001
            logger.error("Supabase download of %s failed: %s", path, exc)
            return None
        if not data:
            logger.warning("Supabase object %s is empty", path)
            return None
        return to_data_uri(data, mime_type_for(path))

    async def log_task(self, unit_id: str, status: str, payload: Dict[str, Any]) -> WriteResult:
        target = f"{self.config.task_table}/{unit_id}"

        def _upsert() -> None:
            response = (
                self.client.table(self.config.task_table)
                .upsert(
                    {
                        "id": unit_id,
                        "status": status,
                        "last_payload": payload,
                        "updated_at": _utc_now(),
                    }
                )
                .execute()
            )
            _raise_for_error(response)

        try:
            await asyncio.to_thread(_upsert)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Task log for %s failed: %s", unit_id, exc)
            return WriteResult.failure(target, str(exc))
        return WriteResult.success(target)


class DeckMirror:
    """Mirrors the full deck to a single Supabase row after a quiet period.

    Every :meth:`notify` replaces the pending snapshot and restarts the
    debounce timer, so a burst of changes produces one write.
    """

    def __init__(
        self,
        client: Any,
        config: SupabaseConfig,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.config = config
        self._sleep = sleep
        self._pending: Optional[List[Dict[str, Any]]] = None
        self._timer: Optional[asyncio.Task] = None
        self.results: List[WriteResult] = []

    def notify(self, units: Sequence[Unit]) -> None:
        self._pending = [unit.to_dict() for unit in units]
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; the snapshot is written by the next drain()
            return
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = loop.create_task(self._write_after_quiet_period())

    async def _write_after_quiet_period(self) -> None:
        await self._sleep(self.config.mirror_debounce_seconds)
        await self.flush()

    async def flush(self) -> WriteResult:
        """Write the pending snapshot now, if there is one."""
        target = f"{self.config.deck_table}/{self.config.deck_id}"
        if self._pending is None:
            return WriteResult.success(target)
        slides, self._pending = self._pending, None

        def _upsert() -> None:
            response = (
                self.client.table(self.config.deck_table)
                .upsert({"id": self.config.deck_id, "slides": slides, "updated_at": _utc_now()})
                .execute()
            )
            _raise_for_error(response)

        try:
            await asyncio.to_thread(_upsert)
            result = WriteResult.success(target)
            logger.debug("Mirrored %d slides to %s", len(slides), target)
        except Exception as exc:  # noqa: BLE001
            logger.error("Deck mirror write failed: %s", exc)
            result = WriteResult.failure(target, str(exc))
        self.results.append(result)
        return result

    async def drain(self) -> None:
        """Wait for a scheduled write, then flush anything still pending."""
        timer = self._timer
        if timer is not None and not timer.done():
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass
        self._timer = None
        await self.flush()
