"""Exception hierarchy for the Banana Mart image studio.

Every error the service raises on purpose derives from :class:`BananaMartError`
and carries the HTTP status it maps to.  The message is intended to be shown
to the user as-is; the API layer renders it as ``{"success": false,
"error": message}``.
"""


class BananaMartError(Exception):
    """Base class for user-facing errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BananaMartError):
    """Rejected input: bad phone format, short password, missing fields."""

    status_code = 400


class AccountExistsError(ValidationError):
    """Registration for a phone number that is already registered."""


class AuthenticationError(BananaMartError):
    """Unknown account, wrong password or wrong admin credentials."""

    status_code = 401


class AuthorizationError(BananaMartError):
    """Missing or wrong admin shared secret."""

    status_code = 403


class InsufficientCreditsError(BananaMartError):
    """The account has no remaining uses."""

    status_code = 403


class AccountNotFoundError(BananaMartError):
    """The phone number does not identify a stored account."""

    status_code = 404


class UpstreamError(BananaMartError):
    """The remote generation service failed or returned nothing usable."""

    status_code = 502


class StorageError(BananaMartError):
    """Reading or writing the data directory failed."""

    status_code = 500


class ConfigurationError(BananaMartError):
    """The service is missing required configuration (e.g. the API key)."""

    status_code = 500
