"""Content-addressed, TTL-bounded cache of model outputs on disk."""

import hashlib
import json
import logging
import threading
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from pydantic import ValidationError

from models import CacheEntry, ModelCall

logger = logging.getLogger(__name__)

CACHE_FILENAME = "cache.json"


def hash_key(model: str, messages: Sequence[Mapping[str, str]]) -> str:
    """Digest of the model id and the ordered ``{role, content}`` messages."""
    digest = hashlib.sha1()
    digest.update(model.encode("utf-8"))
    for message in messages:
        digest.update(message["role"].encode("utf-8"))
        digest.update(b"\x00")
        digest.update(message["content"].encode("utf-8"))
        digest.update(b"\x00")
    return digest.hexdigest()


class ResponseCache:
    """Flat ``key -> CacheEntry`` mapping persisted as JSON.

    Loading never fails: a missing or corrupt file starts an empty cache.
    Concurrent runs may race on the file; the worst case is a lost write.
    """

    def __init__(self, path: Path, ttl_hours: float) -> None:
        self.path = path
        self.ttl_hours = ttl_hours
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @classmethod
    def in_dir(cls, state_dir: Path, ttl_hours: float) -> "ResponseCache":
        cache = cls(state_dir / CACHE_FILENAME, ttl_hours)
        cache.load()
        return cache

    def __len__(self) -> int:
        return len(self._entries)

    def load(self) -> None:
        self._entries = {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except FileNotFoundError:
            return
        except (OSError, ValueError) as e:
            logger.warning("Starting with empty cache, could not read %s: %s", self.path, e)
            return

        if not isinstance(raw, dict):
            return
        for key, value in raw.items():
            try:
                self._entries[key] = CacheEntry.model_validate(value)
            except ValidationError:
                logger.debug("Dropping malformed cache entry %s", key)

    def save(self) -> None:
        with self._lock:
            payload = {key: entry.model_dump() for key, entry in self._entries.items()}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload), encoding="utf-8")
        except OSError as e:
            logger.warning("Could not write cache %s: %s", self.path, e)

    def get_fresh(self, key: str, now: float | None = None) -> ModelCall | None:
        """Cached call for *key* if younger than the TTL."""
        now = time.time() if now is None else now
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or (now - entry.timestamp) / 3600 > self.ttl_hours:
                self.misses += 1
                return None
            self.hits += 1
        return ModelCall(
            text=entry.text,
            prompt_tokens=entry.prompt_tokens,
            completion_tokens=entry.completion_tokens,
            total_tokens=entry.total_tokens,
        )

    def put(self, key: str, call: ModelCall, now: float | None = None) -> None:
        entry = CacheEntry(
            text=call.text,
            prompt_tokens=call.prompt_tokens,
            completion_tokens=call.completion_tokens,
            total_tokens=call.total_tokens,
            timestamp=time.time() if now is None else now,
        )
        with self._lock:
            self._entries[key] = entry
