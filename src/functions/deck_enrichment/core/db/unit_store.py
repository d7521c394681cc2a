"""In-memory, ordered collection of units shared by the scheduler and user actions."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable, List, Optional

from ..contracts import Unit
from ..errors import UnitNotFoundError

logger = logging.getLogger(__name__)

Listener = Callable[[List[Unit]], None]


class UnitStore:
    """Single owner of the deck's current state.

    Every mutation goes through :meth:`apply`, which reads the current unit,
    applies a partial update and writes it back under one lock. The stored
    units are frozen dataclasses, so snapshots handed out can never be
    changed behind the store's back.
    """

    def __init__(self, units: Iterable[Unit] = ()) -> None:
        self.lock = threading.Lock()
        self._units: List[Unit] = []
        self._listeners: List[Listener] = []
        self.replace_all(units, notify=False)

    def __len__(self) -> int:
        with self.lock:
            return len(self._units)

    def subscribe(self, listener: Listener) -> None:
        """Register a callback that receives a snapshot after every change."""
        self._listeners.append(listener)

    def snapshot(self) -> List[Unit]:
        with self.lock:
            return list(self._units)

    def get(self, unit_id: str) -> Optional[Unit]:
        with self.lock:
            index = self._find(unit_id)
            return self._units[index] if index is not None else None

    def require(self, unit_id: str) -> Unit:
        unit = self.get(unit_id)
        if unit is None:
            raise UnitNotFoundError(f"Unknown unit: {unit_id}")
        return unit

    def apply(self, unit_id: str, **changes: Any) -> Unit:
        """Atomically merge *changes* into the unit and return the new version."""
        return self.update(unit_id, lambda unit: unit.with_updates(**changes))

    def update(self, unit_id: str, updater: Callable[[Unit], Unit]) -> Unit:
        """Replace the unit with ``updater(current)`` under the store lock.

        Exceptions raised by *updater* propagate and leave the unit unchanged.
        """
        with self.lock:
            index = self._find(unit_id)
            if index is None:
                raise UnitNotFoundError(f"Unknown unit: {unit_id}")
            updated = updater(self._units[index])
            if updated.id != unit_id:
                raise ValueError("Updater must not change the unit id")
            self._units[index] = updated
            snapshot = list(self._units)
        self._notify(snapshot)
        return updated

    def replace_all(self, units: Iterable[Unit], *, notify: bool = True) -> None:
        ordered = sorted(units, key=lambda unit: unit.sequence_index)
        ids = [unit.id for unit in ordered]
        if len(ids) != len(set(ids)):
            raise ValueError("Unit ids must be unique")
        with self.lock:
            self._units = ordered
            snapshot = list(self._units)
        if notify:
            self._notify(snapshot)

    def clear(self) -> None:
        self.replace_all([])

    def _find(self, unit_id: str) -> Optional[int]:
        for index, unit in enumerate(self._units):
            if unit.id == unit_id:
                return index
        return None

    def _notify(self, snapshot: List[Unit]) -> None:
        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("Unit store listener failed")
