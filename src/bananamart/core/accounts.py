"""Account operations: registration, login, metering and admin overrides.

:class:`AccountService` holds the business rules and delegates persistence to
an :class:`~bananamart.core.account_store.AccountRepository`.  Credit changes
always run inside :meth:`AccountRepository.update`, so a charge either fully
applies (remaining uses down, generated count and aggregate tally up) or does
not apply at all.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable

from bananamart.core.account_store import Account, AccountRepository, StoreStats, utc_now
from bananamart.core.errors import (
    AccountNotFoundError,
    AuthenticationError,
    InsufficientCreditsError,
    ValidationError,
)

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"^1[3-9][0-9]{9}$")
MIN_PASSWORD_LENGTH = 6
DEFAULT_RESET_USES = 10


def validate_phone(phone: str | None) -> bool:
    """Return ``True`` if *phone* is an 11-digit mobile number."""
    return bool(phone) and PHONE_PATTERN.fullmatch(phone) is not None


class AccountService:
    """Business rules for user accounts.

    Args:
        repository: Account storage.
        initial_uses: Credits granted on registration.
    """

    def __init__(self, repository: AccountRepository, initial_uses: int = 10) -> None:
        self.repository = repository
        self.initial_uses = initial_uses

    def register(self, phone: str, password: str) -> Account:
        """Create an account with the initial credit allowance.

        Raises:
            ValidationError: Bad phone format or password shorter than six
                characters.
            AccountExistsError: The phone number is already registered.
        """
        if not validate_phone(phone):
            raise ValidationError("Please enter a valid mobile phone number")
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        account = Account(phone=phone, password=password, remaining_uses=self.initial_uses)
        self.repository.create(account)
        logger.info(f"Registered account {phone}")
        return account

    def login(self, phone: str, password: str) -> Account:
        """Check credentials and stamp ``last_login_at``.

        Raises:
            ValidationError: Bad phone format.
            AuthenticationError: Unknown phone or wrong password.
        """
        if not validate_phone(phone):
            raise ValidationError("Please enter a valid mobile phone number")

        def stamp_login(account: Account, stats: StoreStats) -> Account:
            if account.password != password:
                raise AuthenticationError("Incorrect password")
            account.last_login_at = utc_now()
            return account

        try:
            account = self.repository.update(phone, stamp_login)
        except AccountNotFoundError as e:
            raise AuthenticationError("User does not exist") from e

        logger.info(f"Account {phone} logged in")
        return account

    def get_user_info(self, phone: str) -> Account:
        """Return the stored account.

        Raises:
            AuthenticationError: Unknown phone.
        """
        account = self.repository.get(phone)
        if account is None:
            raise AuthenticationError("User does not exist")
        return account

    def charge_generation(
        self,
        phone: str,
        before_commit: Callable[[Account], None] | None = None,
    ) -> Account:
        """Consume one credit for a generated image.

        *before_commit* runs inside the same unit of work, after the credit
        check and before the counters change.  If it raises, the charge is
        abandoned and the exception propagates.

        Returns:
            The account after the charge.

        Raises:
            AuthenticationError: Unknown phone.
            InsufficientCreditsError: ``remaining_uses`` is zero or less.
        """

        def charge(account: Account, stats: StoreStats) -> Account:
            if account.remaining_uses <= 0:
                raise InsufficientCreditsError(
                    "Generation credits exhausted, please contact the administrator"
                )
            if before_commit is not None:
                before_commit(account)
            account.remaining_uses -= 1
            account.images_generated += 1
            stats.total_images += 1
            return account

        try:
            account = self.repository.update(phone, charge)
        except AccountNotFoundError as e:
            raise AuthenticationError("User does not exist") from e

        logger.info(
            f"Charged {phone}: {account.remaining_uses} uses left, "
            f"{account.images_generated} images generated"
        )
        return account

    def list_all(self) -> dict:
        """Return every account, passwords included, with the aggregate tallies."""
        users = []
        for account in self.repository.list_all():
            users.append({"password": account.password, **account.details()})
        return {"users": users, "stats": self.repository.stats().to_dict()}

    def reset_uses(self, phone: str, new_uses: int = DEFAULT_RESET_USES) -> Account:
        """Overwrite an account's remaining uses.

        Raises:
            ValidationError: *new_uses* is negative.
            AccountNotFoundError: Unknown phone.
        """
        if new_uses < 0:
            raise ValidationError("Remaining uses must be a non-negative integer")

        def reset(account: Account, stats: StoreStats) -> Account:
            account.remaining_uses = new_uses
            return account

        account = self.repository.update(phone, reset)
        logger.info(f"Reset remaining uses of {phone} to {new_uses}")
        return account
