from __future__ import annotations

from typing import Iterable, Optional


class BrowserError(Exception):
    """Root of every error raised by the browser core."""


class ConfigError(BrowserError):
    """Raised when a configuration file or value cannot be used."""


class AuthError(BrowserError):
    """Login failed. ``reason`` is one of the keys of ``HINTS``."""

    HINTS = {
        "bad_credentials": "Check your username and password.",
        "no_access": "Your account does not have access to this server.",
        "bad_url": "Check the server address.",
        "unreachable": "The server could not be reached. Check your network connection.",
    }

    def __init__(self, reason: str, message: Optional[str] = None) -> None:
        if reason not in self.HINTS:
            reason = "no_access"
        self.reason = reason
        self.hint = self.HINTS[reason]
        super().__init__(message or self.hint)


class AccessError(BrowserError):
    """Authenticated, but not allowed to read or change a specific object."""


class TransientFetchError(BrowserError):
    """Transport hiccup: the call may succeed if repeated later."""


class RepositoryError(BrowserError):
    """The remote repository rejected a write or returned something unusable."""


class ReconciliationAmbiguity(BrowserError):
    """The remote side holds the same key more than once.

    Merging into such a set is ambiguous (which of the duplicates should be
    kept or replaced?), so the merge is refused instead of guessing.
    """

    def __init__(self, keys: Iterable[str]) -> None:
        self.keys = sorted(set(keys))
        super().__init__(
            "Keys not unique on the server, please make them unique: "
            + ", ".join(self.keys)
        )
