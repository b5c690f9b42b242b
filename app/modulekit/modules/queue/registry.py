from __future__ import annotations

import json
import threading
import time
from typing import Any

JOB_TTL_SECONDS = 7 * 24 * 3600


class JobRegistry:
    """Remembers which job ids were enqueued, and with what data."""

    def add(self, job_id: str, data: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def get(self, job_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def remove(self, job_id: str) -> None:
        raise NotImplementedError

    def list(self, start: int = 0, end: int = 50) -> list[dict[str, Any]]:
        raise NotImplementedError

    def close(self) -> None:
        pass

    @staticmethod
    def _entry(job_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return {"id": job_id, "data": data, "created": int(time.time() * 1000)}


class MemoryJobRegistry(JobRegistry):
    def __init__(self) -> None:
        self._jobs: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def add(self, job_id: str, data: dict[str, Any]) -> dict[str, Any]:
        entry = self._entry(job_id, data)
        with self._lock:
            self._jobs[job_id] = entry
        return entry

    def get(self, job_id: str) -> dict[str, Any] | None:
        with self._lock:
            return self._jobs.get(job_id)

    def remove(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    def list(self, start: int = 0, end: int = 50) -> list[dict[str, Any]]:
        with self._lock:
            entries = sorted(self._jobs.values(), key=lambda e: e["created"], reverse=True)
        return entries[start:end]


class RedisJobRegistry(JobRegistry):
    def __init__(self, client, queue_name: str) -> None:
        self._client = client
        self._prefix = f"queue:{queue_name}"

    @classmethod
    def from_url(cls, url: str, queue_name: str) -> "RedisJobRegistry":
        import redis

        return cls(redis.Redis.from_url(url, socket_timeout=2, socket_connect_timeout=2), queue_name)

    def _key(self, job_id: str) -> str:
        return f"{self._prefix}:job:{job_id}"

    @property
    def _index(self) -> str:
        return f"{self._prefix}:jobs"

    def add(self, job_id: str, data: dict[str, Any]) -> dict[str, Any]:
        entry = self._entry(job_id, data)
        pipe = self._client.pipeline()
        pipe.set(self._key(job_id), json.dumps(entry), ex=JOB_TTL_SECONDS)
        pipe.zadd(self._index, {job_id: entry["created"]})
        pipe.execute()
        return entry

    def get(self, job_id: str) -> dict[str, Any] | None:
        raw = self._client.get(self._key(job_id))
        return json.loads(raw) if raw else None

    def remove(self, job_id: str) -> None:
        pipe = self._client.pipeline()
        pipe.delete(self._key(job_id))
        pipe.zrem(self._index, job_id)
        pipe.execute()

    def list(self, start: int = 0, end: int = 50) -> list[dict[str, Any]]:
        out = []
        for raw_id in self._client.zrevrange(self._index, start, max(start, end - 1)):
            job_id = raw_id.decode() if isinstance(raw_id, bytes) else raw_id
            entry = self.get(job_id)
            if entry is None:
                # Expired; drop it from the index.
                self._client.zrem(self._index, job_id)
                continue
            out.append(entry)
        return out

    def close(self) -> None:
        self._client.close()
