from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from uuid import uuid4

logger = logging.getLogger(__name__)


class MeetingLockStore(ABC):
    @abstractmethod
    def acquire(self, meeting_uuid: str, wait_seconds: float) -> str | None:
        """Return an owner token once the lock is held, or ``None`` on timeout."""
        raise NotImplementedError

    @abstractmethod
    def release(self, meeting_uuid: str, owner_token: str) -> None:
        raise NotImplementedError

    @contextmanager
    def hold(self, meeting_uuid: str, wait_seconds: float) -> Iterator[bool]:
        owner_token = self.acquire(meeting_uuid, wait_seconds)
        try:
            yield owner_token is not None
        finally:
            if owner_token is not None:
                self.release(meeting_uuid, owner_token)


class InMemoryMeetingLockStore(MeetingLockStore):
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._waiters: dict[str, int] = {}
        self._owners: dict[str, str] = {}

    def acquire(self, meeting_uuid: str, wait_seconds: float) -> str | None:
        with self._guard:
            meeting_lock = self._locks.setdefault(meeting_uuid, threading.Lock())
            self._waiters[meeting_uuid] = self._waiters.get(meeting_uuid, 0) + 1

        acquired = meeting_lock.acquire(timeout=max(wait_seconds, 0))
        with self._guard:
            if not acquired:
                self._forget_waiter(meeting_uuid)
                return None
            owner_token = uuid4().hex
            self._owners[meeting_uuid] = owner_token
            return owner_token

    def release(self, meeting_uuid: str, owner_token: str) -> None:
        with self._guard:
            if self._owners.get(meeting_uuid) != owner_token:
                return
            del self._owners[meeting_uuid]
            meeting_lock = self._locks[meeting_uuid]
            meeting_lock.release()
            self._forget_waiter(meeting_uuid)

    def is_locked(self, meeting_uuid: str) -> bool:
        with self._guard:
            return meeting_uuid in self._owners

    def _forget_waiter(self, meeting_uuid: str) -> None:
        remaining = self._waiters.get(meeting_uuid, 1) - 1
        if remaining > 0:
            self._waiters[meeting_uuid] = remaining
            return
        self._waiters.pop(meeting_uuid, None)
        self._locks.pop(meeting_uuid, None)


class MongoMeetingLockStore(MeetingLockStore):
    """Lease-based lock shared by every instance pointing at the same collection.

    Each held lock is one document keyed by meeting uuid. Leases expire after
    ``ttl_seconds`` so a crashed holder cannot block a meeting forever.
    """

    def __init__(
        self,
        uri: str,
        db_name: str,
        collection_name: str,
        connect_timeout_ms: int = 2000,
        ttl_seconds: int = 120,
        poll_interval_seconds: float = 0.2,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        self._collection = self._client[db_name][collection_name]
        self._collection.create_index([("expires_at", 1)], expireAfterSeconds=0)
        self._ttl_seconds = ttl_seconds
        self._poll_interval_seconds = poll_interval_seconds

    def acquire(self, meeting_uuid: str, wait_seconds: float) -> str | None:
        from pymongo.errors import DuplicateKeyError

        owner_token = uuid4().hex
        deadline = time.monotonic() + max(wait_seconds, 0)
        while True:
            now = datetime.now(UTC)
            # The TTL monitor only runs periodically; drop expired leases eagerly.
            self._collection.delete_one({"_id": meeting_uuid, "expires_at": {"$lte": now}})
            try:
                self._collection.insert_one(
                    {
                        "_id": meeting_uuid,
                        "owner": owner_token,
                        "acquired_at": now,
                        "expires_at": now + timedelta(seconds=self._ttl_seconds),
                    },
                )
                return owner_token
            except DuplicateKeyError:
                if time.monotonic() >= deadline:
                    logger.info("Meeting lock busy meeting_uuid=%s", meeting_uuid)
                    return None
                time.sleep(self._poll_interval_seconds)

    def release(self, meeting_uuid: str, owner_token: str) -> None:
        self._collection.delete_one({"_id": meeting_uuid, "owner": owner_token})


def create_meeting_lock_store(
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
    ttl_seconds: int,
) -> MeetingLockStore:
    return _create_meeting_lock_store_cached(
        store_name=store_name,
        mongodb_uri=mongodb_uri,
        mongodb_db_name=mongodb_db_name,
        mongodb_collection_name=mongodb_collection_name,
        mongodb_connect_timeout_ms=mongodb_connect_timeout_ms,
        ttl_seconds=ttl_seconds,
    )


@lru_cache
def _create_meeting_lock_store_cached(
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
    ttl_seconds: int,
) -> MeetingLockStore:
    if store_name == "mongodb":
        return MongoMeetingLockStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_collection_name,
            connect_timeout_ms=mongodb_connect_timeout_ms,
            ttl_seconds=ttl_seconds,
        )

    if store_name != "memory":
        logger.warning("Unknown meeting lock store=%s, using in-memory locks", store_name)
    return InMemoryMeetingLockStore()


def clear_meeting_lock_store_cache() -> None:
    _create_meeting_lock_store_cached.cache_clear()
