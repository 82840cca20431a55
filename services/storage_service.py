"""
Storage Service - Local JSON cache of curricula and recent searches
"""

import json
import os
import logging
import threading
from typing import List, Optional
from pydantic import ValidationError
from models.schemas import Unit
from core.exceptions import PersistenceError
import config


class StorageService:
    """Persists generated units keyed by topic plus a recent-search list.

    The whole document is loaded once at construction and rewritten after
    every change. Writes are serialized with a lock, so the last accepted
    write for a topic wins.
    """

    def __init__(self, storage_path: str = None, recent_limit: int = None):
        self.storage_path = storage_path or config.STORAGE_JSON_PATH
        self.recent_limit = recent_limit or config.RECENT_SEARCHES_LIMIT
        self._lock = threading.Lock()
        self._data = self._load()
        logging.info(f"StorageService initialized with {len(self._data['curricula'])} cached curricula")

    def _load(self) -> dict:
        empty = {"curricula": {}, "recent_searches": []}
        if not os.path.exists(self.storage_path):
            return empty
        try:
            with open(self.storage_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logging.error(f"Could not read curriculum cache {self.storage_path}: {e}")
            return empty
        if not isinstance(data, dict):
            logging.error(f"Ignoring malformed curriculum cache {self.storage_path}")
            return empty
        return {
            "curricula": data.get("curricula") or {},
            "recent_searches": data.get("recent_searches") or [],
        }

    def _write(self, data: dict):
        """Write a new document to disk, then make it the in-memory state."""
        directory = os.path.dirname(self.storage_path)
        tmp_path = f"{self.storage_path}.tmp"
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.storage_path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Could not write curriculum cache: {e}") from e
        self._data = data

    def _with_curricula(self, curricula: dict) -> dict:
        return {**self._data, "curricula": curricula}

    # ===== CURRICULA =====

    def save_curriculum(self, topic: str, units: List[Unit]):
        """Store the full unit list for a topic, replacing any previous one."""
        with self._lock:
            curricula = dict(self._data["curricula"])
            curricula[topic] = [unit.model_dump(mode="json") for unit in units]
            self._write(self._with_curricula(curricula))
        logging.info(f"Cached {len(units)} units for topic '{topic}'")

    def load_curriculum(self, topic: str) -> Optional[List[Unit]]:
        with self._lock:
            raw_units = self._data["curricula"].get(topic)
        if not raw_units:
            return None
        try:
            return [Unit.model_validate(raw) for raw in raw_units]
        except ValidationError as e:
            raise PersistenceError(f"Cached curriculum for '{topic}' is corrupted: {e}") from e

    def delete_curriculum(self, topic: str) -> bool:
        with self._lock:
            if topic not in self._data["curricula"]:
                return False
            curricula = {key: value for key, value in self._data["curricula"].items() if key != topic}
            self._write(self._with_curricula(curricula))
        return True

    def list_topics(self) -> List[str]:
        with self._lock:
            return list(self._data["curricula"].keys())

    # ===== RECENT SEARCHES =====

    def add_recent_search(self, topic: str):
        """Move the topic to the front of the recent list."""
        with self._lock:
            recent = [item for item in self._data["recent_searches"] if item != topic]
            recent.insert(0, topic)
            self._write({**self._data, "recent_searches": recent[:self.recent_limit]})

    def get_recent_searches(self) -> List[str]:
        with self._lock:
            return list(self._data["recent_searches"])

    def clear_recent_searches(self):
        with self._lock:
            self._write({**self._data, "recent_searches": []})
