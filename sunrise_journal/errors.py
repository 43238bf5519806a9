# -*- coding: utf-8 -*-
"""Exception types raised by the journal store."""
from __future__ import annotations

from typing import Optional


class JournalError(Exception):
    """Base class for every error the journal store raises on purpose."""


class AuthenticationFailure(JournalError):
    """Wrong credentials; no session was established."""


class DecryptionFailure(JournalError):
    """Ciphertext could not be authenticated with the given key and IV."""


class RemoteUnavailable(JournalError):
    """The row store or identity provider could not serve the request."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ValidationFailure(JournalError, ValueError):
    """Input rejected before any crypto or network call."""


class ProfileConflict(JournalError):
    """A profile row for this user already exists."""
