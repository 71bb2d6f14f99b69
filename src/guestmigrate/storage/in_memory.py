"""
In-memory storage implementations.

Useful for testing and development. All data is lost when the process
terminates.
"""

import asyncio

from guestmigrate.observability import (
    ATTR_ACCOUNT_ID,
    ATTR_RECORD_KEY,
    Tracer,
    create_tracer,
)


class InMemoryKeyValueStore:
    """
    In-memory implementation of KeyValueStore.

    Example:
        >>> store = InMemoryKeyValueStore()
        >>> await store.set("guest:profile", b"{}")
        >>> await store.get("guest:profile")
        b'{}'
    """

    def __init__(
        self,
        initial: dict[str, bytes] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._data: dict[str, bytes] = dict(initial or {})
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> bytes | None:
        with self._tracer.span("guestmigrate.kv_store.get", {ATTR_RECORD_KEY: key}):
            async with self._lock:
                return self._data.get(key)

    async def set(self, key: str, value: bytes) -> None:
        with self._tracer.span("guestmigrate.kv_store.set", {ATTR_RECORD_KEY: key}):
            async with self._lock:
                self._data[key] = bytes(value)

    async def delete(self, key: str) -> None:
        with self._tracer.span("guestmigrate.kv_store.delete", {ATTR_RECORD_KEY: key}):
            async with self._lock:
                self._data.pop(key, None)

    def snapshot(self) -> dict[str, bytes]:
        """Return a copy of the stored data. Useful for test assertions."""
        return dict(self._data)

    async def clear(self) -> None:
        async with self._lock:
            self._data.clear()


class InMemoryAccountRecordStore:
    """
    In-memory implementation of AccountRecordStore.

    Example:
        >>> remote = InMemoryAccountRecordStore()
        >>> await remote.put_account_record("acct-1", "profile", b"{}")
        >>> await remote.get_account_record("acct-1", "profile")
        b'{}'
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._records: dict[tuple[str, str], bytes] = {}
        self._lock = asyncio.Lock()

    async def get_account_record(self, account_id: str, key: str) -> bytes | None:
        with self._tracer.span(
            "guestmigrate.account_store.get_account_record",
            {ATTR_ACCOUNT_ID: account_id, ATTR_RECORD_KEY: key},
        ):
            async with self._lock:
                return self._records.get((account_id, key))

    async def put_account_record(self, account_id: str, key: str, value: bytes) -> None:
        with self._tracer.span(
            "guestmigrate.account_store.put_account_record",
            {ATTR_ACCOUNT_ID: account_id, ATTR_RECORD_KEY: key},
        ):
            async with self._lock:
                self._records[(account_id, key)] = bytes(value)

    def records_for(self, account_id: str) -> dict[str, bytes]:
        """Return a copy of every record stored for ``account_id``."""
        return {k: v for (acct, k), v in self._records.items() if acct == account_id}


__all__ = [
    "InMemoryKeyValueStore",
    "InMemoryAccountRecordStore",
]
