"""
Exceptions for the guestmigrate package.

Exception Hierarchy:
    MigrationError (base)
    +-- InvalidKeyError
    +-- MissingAccountIdError
    +-- AccountAlreadyAssociatedError
    +-- MigrationStateError
    |   +-- MigrationCancellationNotAllowedError
    +-- RecordDecodeError
    +-- StorageError
        +-- RemoteStorageError

Only contract violations (malformed keys, missing account ids, reading the
guest namespace after an account has been associated) are raised across the
public API. Storage and network failures are raised by backends and turned
into structured results by the migration components.

This module also holds RetryConfig and retry_async, used to bound retries of
remote calls.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MigrationError(Exception):
    """
    Base exception for all guestmigrate errors.

    Attributes:
        message: Human-readable error description.
        account_id: The account involved, if applicable.
        key: The logical record key involved, if applicable.
        recoverable: Whether retrying later may succeed.
    """

    error_code: str = "MIGRATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        account_id: str | None = None,
        key: str | None = None,
        recoverable: bool = False,
    ) -> None:
        self.message = message
        self.account_id = account_id
        self.key = key
        self.recoverable = recoverable
        super().__init__(message)

    def __str__(self) -> str:
        """Return formatted error string with context."""
        parts = [self.message]
        if self.account_id:
            parts.append(f"account_id={self.account_id}")
        if self.key:
            parts.append(f"key={self.key}")
        if self.recoverable:
            parts.append("(recoverable)")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to a dictionary for logging and results."""
        return {
            "message": self.message,
            "error_code": self.error_code,
            "account_id": self.account_id,
            "key": self.key,
            "recoverable": self.recoverable,
        }


class InvalidKeyError(MigrationError, ValueError):
    """Raised when a logical key is empty or otherwise malformed."""

    error_code = "INVALID_KEY"

    def __init__(self, key: str) -> None:
        super().__init__(f"Invalid logical key: {key!r}", key=key or None)


class MissingAccountIdError(MigrationError, ValueError):
    """Raised when an operation that needs an account id is called without one."""

    error_code = "MISSING_ACCOUNT_ID"

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} requires a non-empty account id")


class AccountAlreadyAssociatedError(MigrationError):
    """
    Raised when guest data is inspected after an account was associated.

    Once the session is bound to an account, guest-data checks would read
    the account namespace and always report nothing, so the check has to
    happen before sign-in completes.
    """

    error_code = "ACCOUNT_ALREADY_ASSOCIATED"

    def __init__(self, account_id: str) -> None:
        super().__init__(
            "Guest data must be checked before an account is associated with the session",
            account_id=account_id,
        )


class MigrationStateError(MigrationError):
    """Raised when an operation is invalid for the current migration state."""

    error_code = "MIGRATION_STATE_ERROR"


class MigrationCancellationNotAllowedError(MigrationStateError):
    """Raised when cancellation is requested but disabled by configuration."""

    error_code = "MIGRATION_CANCEL_NOT_ALLOWED"

    def __init__(self) -> None:
        super().__init__("Migration cancellation is not allowed")


class RecordDecodeError(MigrationError):
    """Raised when a stored payload cannot be decoded into a typed record."""

    error_code = "RECORD_DECODE_ERROR"


class StorageError(MigrationError):
    """Raised by storage backends when a read, write or delete fails."""

    error_code = "STORAGE_ERROR"


class RemoteStorageError(StorageError):
    """
    Raised by remote record stores.

    Timeouts are reported as RemoteStorageError with recoverable=True.
    """

    error_code = "REMOTE_STORAGE_ERROR"


@dataclass(frozen=True)
class RetryConfig:
    """
    Bounded retry with exponential backoff and jitter.

    The default makes a single attempt: failed keys are retried by the next
    explicit migration call, not automatically.

    Attributes:
        max_attempts: Maximum number of attempts (including the first).
        base_delay_ms: Delay before the first retry in milliseconds.
        max_delay_ms: Upper bound on any single delay in milliseconds.
        exponential_base: Backoff multiplier.
        jitter_factor: Random jitter factor (0.0 to 1.0).
    """

    max_attempts: int = 1
    base_delay_ms: float = 1000.0
    max_delay_ms: float = 16000.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.1

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= "
                f"base_delay_ms ({self.base_delay_ms})"
            )
        if self.exponential_base < 1.0:
            raise ValueError(f"exponential_base must be >= 1.0, got {self.exponential_base}")
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise ValueError(f"jitter_factor must be between 0.0 and 1.0, got {self.jitter_factor}")

    def get_delay_ms(self, attempt: int) -> float:
        """
        Calculate the delay before retry number ``attempt`` (0-indexed).

        Returns:
            Delay in milliseconds, capped at max_delay_ms.
        """
        delay = self.base_delay_ms * (self.exponential_base**attempt)
        if self.jitter_factor > 0:
            delay += delay * self.jitter_factor * random.random()  # nosec B311 - retry jitter
        return min(delay, self.max_delay_ms)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    operation_name: str,
    config: RetryConfig,
) -> T:
    """
    Run ``operation`` retrying recoverable StorageErrors per ``config``.

    Non-recoverable errors and errors of other types propagate immediately.
    The last error propagates once attempts are exhausted.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except StorageError as e:
            if not e.recoverable or attempt + 1 >= config.max_attempts:
                raise
            delay_s = config.get_delay_ms(attempt) / 1000.0
            logger.warning(
                "Retryable error in '%s' (attempt %d/%d): %s. Retrying in %.2fs",
                operation_name,
                attempt + 1,
                config.max_attempts,
                e.message,
                delay_s,
            )
            await asyncio.sleep(delay_s)
            attempt += 1


__all__ = [
    "MigrationError",
    "InvalidKeyError",
    "MissingAccountIdError",
    "AccountAlreadyAssociatedError",
    "MigrationStateError",
    "MigrationCancellationNotAllowedError",
    "RecordDecodeError",
    "StorageError",
    "RemoteStorageError",
    "RetryConfig",
    "retry_async",
]
