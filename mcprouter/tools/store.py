"""Persisted provider catalog — JSON file store and the store interface."""
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, List

from .models import ProviderDescriptor

logger = logging.getLogger(__name__)


class ProviderStore(ABC):
    """Backing store for the provider registry: load, upsert and delete by id."""

    @abstractmethod
    async def load_all(self) -> List[ProviderDescriptor]:
        ...

    @abstractmethod
    async def upsert(self, descriptor: ProviderDescriptor):
        ...

    @abstractmethod
    async def delete(self, provider_id: str):
        ...


class JsonProviderStore(ProviderStore):
    """Stores ``{"servers": [...]}`` in a single JSON file, rewritten on every change."""

    def __init__(self, path: str):
        self.path = path
        self._entries: Dict[str, dict] = {}

    def _load(self):
        if os.path.exists(self.path):
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._entries = {s["id"]: s for s in data.get("servers", []) if "id" in s}
        else:
            logger.warning(f"Server configuration file not found at {self.path}")
            self._entries = {}

    def _save(self):
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({"servers": list(self._entries.values())}, f, ensure_ascii=False, indent=2)

    async def load_all(self) -> List[ProviderDescriptor]:
        try:
            self._load()
        except (OSError, ValueError) as e:
            logger.warning(f"Could not load server configuration: {e}")
            self._entries = {}
        descriptors = []
        for entry in self._entries.values():
            try:
                descriptors.append(ProviderDescriptor.from_dict(entry))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping invalid server entry {entry.get('id')!r}: {e}")
        return descriptors

    async def upsert(self, descriptor: ProviderDescriptor):
        self._entries[descriptor.id] = descriptor.to_dict()
        self._save()

    async def delete(self, provider_id: str):
        if self._entries.pop(provider_id, None) is not None:
            self._save()
