"""
Storage interfaces consumed by the migration engine.

This module provides:
- KeyValueStore: local, device-scoped key-value storage
- AccountRecordStore: remote per-account record storage

Neither interface assumes transactions. Implementations raise StorageError
(local) or RemoteStorageError (remote) when an operation fails; a timeout
in the remote layer is a RemoteStorageError with recoverable=True.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class KeyValueStore(Protocol):
    """Local key-value storage for physical keys produced by the resolver."""

    async def get(self, key: str) -> bytes | None:
        """
        Return the value stored under ``key``, or None if absent.

        Raises:
            StorageError: If the read fails.
        """
        ...

    async def set(self, key: str, value: bytes) -> None:
        """
        Store ``value`` under ``key``, replacing any previous value.

        Raises:
            StorageError: If the write fails.
        """
        ...

    async def delete(self, key: str) -> None:
        """
        Remove ``key``. Deleting an absent key is not an error.

        Raises:
            StorageError: If the delete fails.
        """
        ...


@runtime_checkable
class AccountRecordStore(Protocol):
    """Remote storage of records owned by an account, keyed by logical key."""

    async def get_account_record(self, account_id: str, key: str) -> bytes | None:
        """
        Return the account's record under ``key``, or None if absent.

        Raises:
            RemoteStorageError: If the read fails.
        """
        ...

    async def put_account_record(self, account_id: str, key: str, value: bytes) -> None:
        """
        Write the account's record under ``key`` (last write wins).

        Raises:
            RemoteStorageError: If the write fails.
        """
        ...


__all__ = [
    "KeyValueStore",
    "AccountRecordStore",
]
