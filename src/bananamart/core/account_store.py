"""Account persistence for the Banana Mart image studio.

Accounts are keyed by phone number and live in a single JSON document:

.. code-block:: json

    {
      "users": {
        "13800138000": {
          "phone": "13800138000",
          "password": "secret1",
          "remainingUses": 10,
          "imagesGenerated": 0,
          "createdAt": "2025-01-01T00:00:00+00:00",
          "lastLoginAt": null
        }
      },
      "admin": {"totalUsers": 1, "totalImages": 0}
    }

The whole document is read into memory and rewritten on every mutation.
Callers never get raw load/save access: every read-modify-write goes through
:meth:`AccountRepository.update`, which runs the caller's mutator under the
repository lock and persists only if the mutator returns normally.  That is
what keeps concurrent charges against the same account from losing updates.

Two implementations are provided:

- :class:`JsonFileAccountRepository` for production (``users.json``)
- :class:`InMemoryAccountRepository` for tests
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TypeVar

from bananamart.core.errors import AccountExistsError, AccountNotFoundError, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Account:
    """A registered user.

    Attributes:
        phone: Mobile number, the sole identity key.
        password: Plaintext password, compared by equality on login.
        remaining_uses: Generation credits left; never negative.
        images_generated: Number of images charged to this account.
        created_at: ISO-8601 registration timestamp.
        last_login_at: ISO-8601 timestamp of the last login, if any.
    """

    phone: str
    password: str
    remaining_uses: int
    images_generated: int = 0
    created_at: str = field(default_factory=utc_now)
    last_login_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> Account:
        return cls(
            phone=data["phone"],
            password=data.get("password", ""),
            remaining_uses=int(data.get("remainingUses", 0)),
            images_generated=int(data.get("imagesGenerated", 0)),
            created_at=data.get("createdAt") or utc_now(),
            last_login_at=data.get("lastLoginAt"),
        )

    def to_dict(self) -> dict:
        return {
            "phone": self.phone,
            "password": self.password,
            "remainingUses": self.remaining_uses,
            "imagesGenerated": self.images_generated,
            "createdAt": self.created_at,
            "lastLoginAt": self.last_login_at,
        }

    def summary(self) -> dict:
        """Public view returned by register/login (no password)."""
        return {
            "phone": self.phone,
            "remainingUses": self.remaining_uses,
            "imagesGenerated": self.images_generated,
        }

    def details(self) -> dict:
        """Public view including timestamps (no password)."""
        return {
            **self.summary(),
            "createdAt": self.created_at,
            "lastLoginAt": self.last_login_at,
        }


@dataclass
class StoreStats:
    """Aggregate tallies kept next to the accounts.

    They are incremented alongside account mutations and never recomputed,
    so they reflect history rather than the current account list.
    """

    total_users: int = 0
    total_images: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> StoreStats:
        return cls(
            total_users=int(data.get("totalUsers", 0)),
            total_images=int(data.get("totalImages", 0)),
        )

    def to_dict(self) -> dict:
        return {"totalUsers": self.total_users, "totalImages": self.total_images}


class AccountRepository(ABC):
    """Storage interface for accounts and aggregate counters."""

    @abstractmethod
    def get(self, phone: str) -> Account | None:
        """Return a snapshot of the account, or ``None`` if unknown."""

    @abstractmethod
    def create(self, account: Account) -> None:
        """Insert a new account and bump ``total_users``.

        Raises:
            AccountExistsError: If the phone number is already stored.
        """

    @abstractmethod
    def update(self, phone: str, mutator: Callable[[Account, StoreStats], T]) -> T:
        """Atomically apply *mutator* to an account and the counters.

        The mutator receives working copies.  If it raises, nothing is
        persisted and the exception propagates.  Otherwise both the account
        and the counters are stored and the mutator's return value is
        returned.

        Raises:
            AccountNotFoundError: If the phone number is unknown.
        """

    @abstractmethod
    def list_all(self) -> list[Account]:
        """Return snapshots of every account in insertion order."""

    @abstractmethod
    def stats(self) -> StoreStats:
        """Return a snapshot of the aggregate counters."""


class InMemoryAccountRepository(AccountRepository):
    """Dictionary-backed repository with the same commit-on-success rules."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self._stats = StoreStats()
        self._lock = threading.RLock()

    def get(self, phone: str) -> Account | None:
        with self._lock:
            account = self._accounts.get(phone)
            return copy.deepcopy(account) if account else None

    def create(self, account: Account) -> None:
        with self._lock:
            if account.phone in self._accounts:
                raise AccountExistsError("Phone number already registered")
            self._accounts[account.phone] = copy.deepcopy(account)
            self._stats.total_users += 1

    def update(self, phone: str, mutator: Callable[[Account, StoreStats], T]) -> T:
        with self._lock:
            current = self._accounts.get(phone)
            if current is None:
                raise AccountNotFoundError("User does not exist")

            account = copy.deepcopy(current)
            stats = copy.deepcopy(self._stats)
            result = mutator(account, stats)

            self._accounts[phone] = account
            self._stats = stats
            return result

    def list_all(self) -> list[Account]:
        with self._lock:
            return [copy.deepcopy(a) for a in self._accounts.values()]

    def stats(self) -> StoreStats:
        with self._lock:
            return copy.deepcopy(self._stats)


class JsonFileAccountRepository(AccountRepository):
    """Repository persisted to a single ``users.json`` document.

    Every operation reloads the file so that edits made while the service is
    running (or by another worker sharing the lock) are observed.  Writes go
    to a temporary file in the same directory and are moved into place with
    :func:`os.replace`, so a crash mid-write never leaves a truncated file.

    The lock serialises read-modify-write cycles within one process.  Several
    processes writing the same file are not coordinated.
    """

    def __init__(self, users_file: Path) -> None:
        self.users_file = Path(users_file)
        self.users_file.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

        if not self.users_file.exists():
            self._write({"users": {}, "admin": StoreStats().to_dict()})
            logger.info(f"Initialised account store at {self.users_file}")

    # ------------------------------------------------------------------
    # Raw document access.
    # ------------------------------------------------------------------

    def _read(self) -> dict:
        try:
            with open(self.users_file, encoding="utf-8") as handle:
                document = json.load(handle)
        except FileNotFoundError:
            return {"users": {}, "admin": StoreStats().to_dict()}
        except (OSError, ValueError) as e:
            # Refusing to continue keeps a corrupt file from being replaced
            # by an empty document on the next write.
            logger.exception(f"Failed to read account store {self.users_file}")
            raise StorageError("Failed to read account data, please try again later") from e

        if not isinstance(document, dict):
            raise StorageError("Account data is malformed")
        document.setdefault("users", {})
        document.setdefault("admin", StoreStats().to_dict())
        return document

    def _write(self, document: dict) -> None:
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=self.users_file.parent, prefix=".users-", suffix=".json"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.users_file)
        except OSError as e:
            logger.exception(f"Failed to write account store {self.users_file}")
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StorageError("Failed to save account data, please try again later") from e

    # ------------------------------------------------------------------
    # Repository interface.
    # ------------------------------------------------------------------

    def get(self, phone: str) -> Account | None:
        with self._lock:
            raw = self._read()["users"].get(phone)
            return Account.from_dict(raw) if raw else None

    def create(self, account: Account) -> None:
        with self._lock:
            document = self._read()
            if account.phone in document["users"]:
                raise AccountExistsError("Phone number already registered")

            stats = StoreStats.from_dict(document["admin"])
            stats.total_users += 1

            document["users"][account.phone] = account.to_dict()
            document["admin"] = stats.to_dict()
            self._write(document)

    def update(self, phone: str, mutator: Callable[[Account, StoreStats], T]) -> T:
        with self._lock:
            document = self._read()
            raw = document["users"].get(phone)
            if raw is None:
                raise AccountNotFoundError("User does not exist")

            account = Account.from_dict(raw)
            stats = StoreStats.from_dict(document["admin"])
            result = mutator(account, stats)

            document["users"][phone] = account.to_dict()
            document["admin"] = stats.to_dict()
            self._write(document)
            return result

    def list_all(self) -> list[Account]:
        with self._lock:
            return [Account.from_dict(raw) for raw in self._read()["users"].values()]

    def stats(self) -> StoreStats:
        with self._lock:
            return StoreStats.from_dict(self._read()["admin"])
