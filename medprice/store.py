from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Iterable, Protocol

from .errors import MalformedResponseError, PersistenceError
from .models import PriceRecord

logger = logging.getLogger(__name__)

HISTORY_KEY = "medprice_history"
SAVED_KEY = "medprice_prescriptions"
BASKET_KEY = "medprice_basket"

HISTORY_LIMIT = 10

BasketListener = Callable[[frozenset[str]], None]


class KeyValueStorage(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStorage:
    def __init__(self, data: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(data or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value


class JsonFileStorage:
    """String values kept in one JSON object on disk."""

    def __init__(self, path: str | Path = "data/medprice_storage.json"):
        self.path = Path(path)

    def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Cannot read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"{self.path} does not hold a JSON object")
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def get(self, key: str) -> str | None:
        return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        try:
            data = self._read_all()
        except PersistenceError:
            # corrupt file gets overwritten rather than blocking every save
            data = {}
        data[key] = value
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".medprice-", suffix=".json")
        except OSError as e:
            raise PersistenceError(f"Cannot write {self.path}: {e}") from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError) as e:
            Path(tmp).unlink(missing_ok=True)
            raise PersistenceError(f"Cannot write {self.path}: {e}") from e


def _decode_records(raw: str | None, key: str) -> list[PriceRecord]:
    if raw is None:
        return []
    try:
        rows = json.loads(raw)
        if not isinstance(rows, list):
            raise ValueError("expected a JSON array")
        return [PriceRecord.from_dict(r) for r in rows]
    except (ValueError, MalformedResponseError) as e:
        logger.warning("Ignoring unreadable stored collection %s: %s", key, e)
        return []


class CollectionStore:
    """History, saved prescriptions and basket, each keyed on medication name.

    The three collections are independent copies: removing a record from one
    never touches the others. Every write persists the collection it changed.
    """

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage
        self._listeners: list[BasketListener] = []
        self._history = self._load(HISTORY_KEY)[:HISTORY_LIMIT]
        self._saved = self._load(SAVED_KEY)
        self._basket = self._load(BASKET_KEY)

    # -- loading / saving --------------------------------------------------

    def _load(self, key: str) -> list[PriceRecord]:
        try:
            raw = self.storage.get(key)
        except PersistenceError as e:
            logger.warning("Storage unavailable for %s, starting empty: %s", key, e)
            return []
        return _decode_records(raw, key)

    def _persist(self, key: str, records: list[PriceRecord]) -> None:
        payload = json.dumps([r.to_dict() for r in records], ensure_ascii=False)
        try:
            self.storage.set(key, payload)
        except PersistenceError as e:
            logger.warning("Could not persist %s: %s", key, e)

    def _basket_changed(self) -> None:
        self._persist(BASKET_KEY, self._basket)
        names = self.basket_names()
        for listener in list(self._listeners):
            listener(names)

    def subscribe_basket(self, listener: BasketListener) -> None:
        self._listeners.append(listener)

    def unsubscribe_basket(self, listener: BasketListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # -- read surface ------------------------------------------------------

    @property
    def history(self) -> tuple[PriceRecord, ...]:
        return tuple(self._history)

    @property
    def saved(self) -> tuple[PriceRecord, ...]:
        return tuple(self._saved)

    @property
    def basket(self) -> tuple[PriceRecord, ...]:
        return tuple(self._basket)

    def basket_names(self) -> frozenset[str]:
        return frozenset(r.medication_name for r in self._basket)

    def in_basket(self, name: str) -> bool:
        return any(r.medication_name == name for r in self._basket)

    def is_saved(self, name: str) -> bool:
        return any(r.medication_name == name for r in self._saved)

    def find(self, name: str) -> PriceRecord | None:
        """Look a record up by name in basket, saved, then history."""
        for records in (self._basket, self._saved, self._history):
            for r in records:
                if r.medication_name == name:
                    return r
        return None

    # -- basket ------------------------------------------------------------

    def add_to_basket(self, record: PriceRecord) -> bool:
        if self.in_basket(record.medication_name):
            return False
        self._basket.append(record)
        self._basket_changed()
        return True

    def add_all_saved_to_basket(self) -> int:
        present = {r.medication_name for r in self._basket}
        new_items: list[PriceRecord] = []
        for r in self._saved:
            if r.medication_name not in present:
                new_items.append(r)
                present.add(r.medication_name)
        if new_items:
            self._basket.extend(new_items)
            self._basket_changed()
        return len(new_items)

    def remove_from_basket(self, name: str) -> bool:
        return self.remove_from_basket_many([name]) > 0

    def remove_from_basket_many(self, names: Iterable[str]) -> int:
        drop = set(names)
        before = len(self._basket)
        self._basket = [r for r in self._basket if r.medication_name not in drop]
        removed = before - len(self._basket)
        if removed:
            self._basket_changed()
        return removed

    def clear_basket(self) -> None:
        self._basket = []
        self._basket_changed()

    # -- saved prescriptions -----------------------------------------------

    def toggle_saved(self, record: PriceRecord) -> bool:
        """Remove the record if saved under its name, else save it. Returns the new state."""
        name = record.medication_name
        if self.is_saved(name):
            self._saved = [r for r in self._saved if r.medication_name != name]
            now_saved = False
        else:
            self._saved.append(record)
            now_saved = True
        self._persist(SAVED_KEY, self._saved)
        return now_saved

    # -- history -----------------------------------------------------------

    def record_history(self, record: PriceRecord) -> None:
        rest = [r for r in self._history if r.medication_name != record.medication_name]
        self._history = [record, *rest][:HISTORY_LIMIT]
        self._persist(HISTORY_KEY, self._history)

    def clear_history(self) -> None:
        self._history = []
        self._persist(HISTORY_KEY, self._history)
