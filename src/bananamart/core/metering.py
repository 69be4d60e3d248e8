"""Usage metering: one persisted image, one charge.

:class:`UsageMeter` is the only place that writes generated images.  The
write happens inside the account's unit of work:

1. the credit check runs under the repository lock
2. the image file is written
3. remaining uses and the generated counters are updated and persisted

If the credit check fails the file is never written.  If the file write
fails the counters are never touched.  If persisting the counters fails
after the file was written, the file is removed again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from bananamart.core.account_store import Account
from bananamart.core.accounts import AccountService
from bananamart.core.image_library import IMAGE_EXTENSIONS, ImageLibrary, build_filename
from bananamart.core.imaging import ImagePayload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChargeReceipt:
    filename: str
    remaining_uses: int
    images_generated: int

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "remainingUses": self.remaining_uses,
            "imagesGenerated": self.images_generated,
        }


class UsageMeter:
    """Couples image persistence with account charges."""

    def __init__(self, accounts: AccountService, library: ImageLibrary) -> None:
        self.accounts = accounts
        self.library = library

    def record_generation(
        self,
        phone: str,
        image: ImagePayload,
        title: str | None,
        step: str = "single",
        filename: str | None = None,
    ) -> ChargeReceipt:
        """Charge *phone* one credit and store *image*.

        Args:
            phone: Account to charge.
            image: Final image bytes.
            title: Transformation title, encoded into the filename.
            step: ``single`` or ``two-step``.
            filename: Optional client-chosen name; normalised by the library.

        Raises:
            AuthenticationError: Unknown account.
            InsufficientCreditsError: No remaining uses.
            StorageError: The image or the account could not be written.
        """
        if filename:
            final_name = self.library.safe_filename(phone, filename)
            if not final_name.lower().endswith(IMAGE_EXTENSIONS):
                final_name = f"{final_name}.{image.extension}"
        else:
            final_name = build_filename(phone, step, title, image.extension)

        written = False

        def write_image(account: Account) -> None:
            nonlocal written
            self.library.save(final_name, image.data)
            written = True

        try:
            account = self.accounts.charge_generation(phone, before_commit=write_image)
        except Exception:
            if written:
                logger.warning(f"Charge for {phone} failed after saving {final_name}; removing it")
                self.library.delete(final_name)
            raise

        return ChargeReceipt(
            filename=final_name,
            remaining_uses=account.remaining_uses,
            images_generated=account.images_generated,
        )
