"""Append-only history storage in a single JSON file."""
import json
import os
import threading
from typing import Any, Dict, List

from diagnosis_core.application.ports import HistoryStorePort
from diagnosis_core.domain.errors import ExternalUnavailable
from diagnosis_core.domain.models import RecordSource


class JsonHistoryStore(HistoryStorePort):
    """
    Keeps one list of raw records per source type.

    Records are stored exactly as appended and never rewritten; appending a
    record whose id is already present for that source type is a no-op.
    """

    def __init__(self, storage_path: str):
        self.storage_path = storage_path
        self._lock = threading.Lock()
        self._ensure_storage_exists()

    def _ensure_storage_exists(self) -> None:
        storage_dir = os.path.dirname(self.storage_path)
        if storage_dir and not os.path.exists(storage_dir):
            os.makedirs(storage_dir, exist_ok=True)

        if not os.path.exists(self.storage_path) or os.path.getsize(self.storage_path) == 0:
            self._save({})

    def _load(self) -> Dict[str, List[Dict[str, Any]]]:
        try:
            with open(self.storage_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            raise ExternalUnavailable("History store", str(e)) from e
        if not isinstance(data, dict):
            raise ExternalUnavailable("History store", "expected a JSON object at the top level")
        return data

    def _save(self, data: Dict[str, List[Dict[str, Any]]]) -> None:
        tmp_path = self.storage_path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.storage_path)

    def append(self, source_type: RecordSource, record: Dict[str, Any]) -> bool:
        """
        Append a record for the given source.

        Returns:
            True if the record was stored, False if one with the same id already exists
        """
        source_type = RecordSource(source_type)
        if record.get("id") in (None, ""):
            raise ValueError("history records need an id")
        with self._lock:
            data = self._load()
            records = data.setdefault(source_type.value, [])
            if any(str(r.get("id")) == str(record["id"]) for r in records):
                return False
            records.append(dict(record))
            self._save(data)
        return True

    def read(self, source_type: RecordSource) -> List[Dict[str, Any]]:
        source_type = RecordSource(source_type)
        with self._lock:
            data = self._load()
        return [dict(r) for r in data.get(source_type.value, []) if isinstance(r, dict)]
