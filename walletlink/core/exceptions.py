"""
Application-level exceptions.

Every error carries a short machine-readable ``code`` and a ``retryable`` flag
so per-item failures can be collected next to successes and surfaced to the
caller (e.g. to offer a password retry for one profile).
"""

from __future__ import annotations


class WalletLinkError(Exception):
    """Base class for all WalletLink errors."""

    code = "walletlink_error"
    retryable = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict[str, object]:
        return {"code": self.code, "error": self.message, "retryable": self.retryable}


class VaultNotFoundError(WalletLinkError, IOError):
    """Vault, extension store or profile is absent. Callers skip it silently."""

    code = "not_found"


class DecryptionError(WalletLinkError):
    """Authenticated decryption failed."""

    code = "decryption_failed"


class WrongPasswordError(DecryptionError):
    """AEAD / secretbox authentication failed for the supplied password."""

    code = "wrong_password"
    retryable = True


class EntryDecryptionError(DecryptionError):
    """A single Phantom vault entry failed stage-2 decryption; siblings continue."""

    code = "entry_decryption_failed"

    def __init__(self, message: str = "", *, entry_kind: str = "", entry_index: int = -1) -> None:
        super().__init__(message)
        self.entry_kind = entry_kind
        self.entry_index = entry_index


class MalformedVaultError(WalletLinkError):
    """A located vault has an unexpected JSON shape or encoding."""

    code = "malformed_vault"


class ExternalApiError(WalletLinkError):
    """Transfer-history API call failed; recorded as a non-fatal per-unit error."""

    code = "external_api_error"

    def __init__(self, message: str = "", *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(ExternalApiError):
    """Rate limit / timeout retries exhausted for one address-chain unit."""

    code = "rate_limited"


class StorageConstraintViolation(WalletLinkError):
    """Uniqueness conflict on insert; means the row is already recorded."""

    code = "already_recorded"


class ScanAlreadyRunningError(WalletLinkError):
    """A scan was requested while another one is in progress."""

    code = "already_running"
