"""Unit tests for the account repositories."""

from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from bananamart.core.account_store import (
    Account,
    InMemoryAccountRepository,
    JsonFileAccountRepository,
    StoreStats,
)
from bananamart.core.errors import AccountExistsError, AccountNotFoundError, StorageError

PHONE = "13800138000"


@pytest.fixture(params=["memory", "json"])
def any_repository(request, temp_dir: Path):
    """Both repository implementations, to check they share semantics."""
    if request.param == "memory":
        return InMemoryAccountRepository()
    return JsonFileAccountRepository(temp_dir / "users.json")


class TestAccountSerialization:
    """Test Account serialisation."""

    def test_round_trip_uses_camel_case_keys(self):
        """to_dict/from_dict should round-trip with camelCase keys."""
        account = Account(phone=PHONE, password="secret1", remaining_uses=7, images_generated=3)
        data = account.to_dict()
        assert data["remainingUses"] == 7
        assert data["imagesGenerated"] == 3
        assert Account.from_dict(data) == account

    def test_summary_hides_password(self):
        """Public views should never include the password."""
        account = Account(phone=PHONE, password="secret1", remaining_uses=7)
        assert "password" not in account.summary()
        assert "password" not in account.details()
        assert account.details()["createdAt"] == account.created_at


class TestRepositorySemantics:
    """Behaviour shared by every AccountRepository."""

    def test_create_and_get(self, any_repository):
        """A created account should be readable and counted."""
        any_repository.create(Account(phone=PHONE, password="secret1", remaining_uses=10))
        account = any_repository.get(PHONE)
        assert account is not None
        assert account.remaining_uses == 10
        assert any_repository.stats().total_users == 1

    def test_get_unknown_returns_none(self, any_repository):
        """Unknown phones should return None."""
        assert any_repository.get(PHONE) is None

    def test_create_duplicate_rejected(self, any_repository):
        """Duplicate creation should fail without counting twice."""
        any_repository.create(Account(phone=PHONE, password="secret1", remaining_uses=10))
        with pytest.raises(AccountExistsError):
            any_repository.create(Account(phone=PHONE, password="other22", remaining_uses=10))
        assert any_repository.stats().total_users == 1

    def test_get_returns_snapshot(self, any_repository):
        """Mutating a returned account should not change the store."""
        any_repository.create(Account(phone=PHONE, password="secret1", remaining_uses=10))
        snapshot = any_repository.get(PHONE)
        snapshot.remaining_uses = 0
        assert any_repository.get(PHONE).remaining_uses == 10

    def test_update_persists_account_and_stats(self, any_repository):
        """A successful mutator should persist account and counters."""
        any_repository.create(Account(phone=PHONE, password="secret1", remaining_uses=10))

        def mutate(account: Account, stats: StoreStats) -> str:
            account.remaining_uses = 4
            stats.total_images += 2
            return "ok"

        assert any_repository.update(PHONE, mutate) == "ok"
        assert any_repository.get(PHONE).remaining_uses == 4
        assert any_repository.stats().total_images == 2

    def test_failing_mutator_persists_nothing(self, any_repository):
        """A raising mutator should leave the store unchanged."""
        any_repository.create(Account(phone=PHONE, password="secret1", remaining_uses=10))

        def mutate(account: Account, stats: StoreStats) -> None:
            account.remaining_uses = 0
            stats.total_images = 99
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            any_repository.update(PHONE, mutate)
        assert any_repository.get(PHONE).remaining_uses == 10
        assert any_repository.stats().total_images == 0

    def test_update_unknown_raises(self, any_repository):
        """Updating an unknown phone should raise AccountNotFoundError."""
        with pytest.raises(AccountNotFoundError):
            any_repository.update(PHONE, lambda account, stats: None)

    def test_list_all_in_insertion_order(self, any_repository):
        """list_all should return accounts in insertion order."""
        any_repository.create(Account(phone=PHONE, password="secret1", remaining_uses=1))
        any_repository.create(Account(phone="15912345678", password="secret2", remaining_uses=2))
        assert [a.phone for a in any_repository.list_all()] == [PHONE, "15912345678"]

    def test_concurrent_updates_lose_nothing(self, any_repository):
        """Parallel read-modify-write cycles should all be applied."""
        any_repository.create(Account(phone=PHONE, password="secret1", remaining_uses=100))

        def decrement(account: Account, stats: StoreStats) -> None:
            account.remaining_uses -= 1
            stats.total_images += 1

        def worker() -> None:
            for _ in range(5):
                any_repository.update(PHONE, decrement)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert any_repository.get(PHONE).remaining_uses == 60
        assert any_repository.stats().total_images == 40


class TestJsonFileRepository:
    """Test the users.json file layer."""

    def test_initialises_empty_document(self, temp_dir: Path):
        """A missing users file should be created with an empty document."""
        users_file = temp_dir / "nested" / "users.json"
        JsonFileAccountRepository(users_file)

        document = json.loads(users_file.read_text(encoding="utf-8"))
        assert document == {"users": {}, "admin": {"totalUsers": 0, "totalImages": 0}}

    def test_data_survives_new_instance(self, temp_dir: Path):
        """A new repository instance should see earlier writes."""
        users_file = temp_dir / "users.json"
        JsonFileAccountRepository(users_file).create(
            Account(phone=PHONE, password="secret1", remaining_uses=10)
        )

        reopened = JsonFileAccountRepository(users_file)
        assert reopened.get(PHONE).password == "secret1"
        assert reopened.stats().total_users == 1

    def test_document_layout(self, temp_dir: Path):
        """The file should keep the users/admin document layout."""
        users_file = temp_dir / "users.json"
        JsonFileAccountRepository(users_file).create(
            Account(phone=PHONE, password="secret1", remaining_uses=10)
        )

        document = json.loads(users_file.read_text(encoding="utf-8"))
        assert document["users"][PHONE]["remainingUses"] == 10
        assert document["admin"]["totalUsers"] == 1

    def test_corrupt_file_raises_storage_error(self, temp_dir: Path):
        """A corrupt file should raise StorageError and stay untouched."""
        users_file = temp_dir / "users.json"
        users_file.write_text("{not json", encoding="utf-8")
        repository = JsonFileAccountRepository(users_file)

        with pytest.raises(StorageError):
            repository.get(PHONE)
        # The corrupt document must not be overwritten.
        assert users_file.read_text(encoding="utf-8") == "{not json"

    def test_no_temp_files_left_behind(self, temp_dir: Path):
        """Atomic writes should not leave temporary files."""
        repository = JsonFileAccountRepository(temp_dir / "users.json")
        repository.create(Account(phone=PHONE, password="secret1", remaining_uses=10))
        assert [p.name for p in temp_dir.iterdir()] == ["users.json"]
