from __future__ import annotations

import json
import logging
import secrets
import threading
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

MAX_BACKUPS = 50


@dataclass(frozen=True)
class Backup:
    id: str
    file_path: str
    original_content: str
    timestamp: str

    def summary(self) -> dict:
        return {
            "id": self.id,
            "filePath": self.file_path,
            "timestamp": self.timestamp,
            "contentLength": len(self.original_content),
        }


class BackupStore:
    """Insertion-ordered, bounded. The oldest entry is evicted once `max_entries` is exceeded."""

    def __init__(self, max_entries: int = MAX_BACKUPS) -> None:
        self._entries: OrderedDict[str, Backup] = OrderedDict()
        self._lock = threading.Lock()
        self.max_entries = max_entries

    @staticmethod
    def new_id() -> str:
        return f"{int(time.time() * 1000)}-{secrets.token_hex(5)}"

    def add(self, file_path: str, original_content: str) -> Backup:
        backup = Backup(
            id=self.new_id(),
            file_path=file_path,
            original_content=original_content,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        with self._lock:
            self._entries[backup.id] = backup
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return backup

    def get(self, backup_id: str) -> Backup | None:
        with self._lock:
            return self._entries.get(backup_id)

    def pop(self, backup_id: str) -> Backup | None:
        with self._lock:
            return self._entries.pop(backup_id, None)

    def list(self) -> list[Backup]:
        with self._lock:
            return list(self._entries.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisBackupStore(BackupStore):
    """
    Same contract as BackupStore, shared by every worker process. Entries live
    under `{prefix}:{id}` and a sorted set `{prefix}s` orders them by insertion.
    """

    def __init__(self, client, max_entries: int = MAX_BACKUPS, prefix: str = "ai-assist:backup") -> None:
        self._client = client
        self.max_entries = max_entries
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, max_entries: int = MAX_BACKUPS) -> "RedisBackupStore":
        import redis

        return cls(redis.Redis.from_url(url, socket_timeout=2, socket_connect_timeout=2), max_entries)

    def _key(self, backup_id: str) -> str:
        return f"{self._prefix}:{backup_id}"

    @property
    def _index(self) -> str:
        return f"{self._prefix}s"

    def add(self, file_path: str, original_content: str) -> Backup:
        backup = Backup(
            id=self.new_id(),
            file_path=file_path,
            original_content=original_content,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        pipe = self._client.pipeline()
        pipe.set(self._key(backup.id), json.dumps(asdict(backup)))
        pipe.zadd(self._index, {backup.id: time.time()})
        pipe.execute()

        overflow = self._client.zcard(self._index) - self.max_entries
        if overflow > 0:
            for old_id in self._client.zrange(self._index, 0, overflow - 1):
                self._remove(_decode(old_id))
        return backup

    def get(self, backup_id: str) -> Backup | None:
        raw = self._client.get(self._key(backup_id))
        return Backup(**json.loads(raw)) if raw else None

    def pop(self, backup_id: str) -> Backup | None:
        backup = self.get(backup_id)
        if backup is not None:
            self._remove(backup_id)
        return backup

    def _remove(self, backup_id: str) -> None:
        pipe = self._client.pipeline()
        pipe.delete(self._key(backup_id))
        pipe.zrem(self._index, backup_id)
        pipe.execute()

    def list(self) -> list[Backup]:
        out = []
        for raw_id in self._client.zrange(self._index, 0, -1):
            backup = self.get(_decode(raw_id))
            if backup is not None:
                out.append(backup)
        return out

    def __len__(self) -> int:
        return int(self._client.zcard(self._index))


def _decode(value) -> str:
    return value.decode() if isinstance(value, bytes) else value


def backup_store_from_config(config: dict) -> BackupStore:
    """Redis-backed when REDIS_URL is reachable, so backups survive across gunicorn workers."""
    url = (config.get("REDIS_URL") or "").strip()
    if url and config.get("AI_ASSIST_BACKUP_BACKEND", "redis") == "redis":
        import redis

        try:
            store = RedisBackupStore.from_url(url)
            store._client.ping()
            return store
        except redis.exceptions.RedisError as e:
            logger.warning("AI backups falling back to memory store (redis unavailable: %s)", e)
    return BackupStore()
