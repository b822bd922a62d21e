"""Exception hierarchy for ccpet."""

from __future__ import annotations


class CcpetError(Exception):
    """Base class for all ccpet errors."""


class InvalidArgumentError(CcpetError, ValueError):
    """Raised when an energy or feeding amount is not a finite non-negative number."""


class GraveyardError(CcpetError):
    """Raised when a dead pet could not be archived.

    The pre-operation backup of the live state file is left on disk so the
    pet can be recovered by hand.
    """

    def __init__(self, message: str, backup_path=None) -> None:
        super().__init__(message)
        self.backup_path = backup_path
