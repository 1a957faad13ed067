"""Exception types raised across the hot token pipeline."""

from __future__ import annotations


class HotTokensError(RuntimeError):
    """Base class for errors that cross a component boundary."""


class SourceUnavailable(HotTokensError):
    """Raised when the upstream pool listing cannot be read."""


class RankingUnavailable(HotTokensError):
    """Raised by the service when a ranking pass could not be produced."""


class InvalidPoolRecord(ValueError):
    """Raised while normalizing a pool record that does not fit the schema."""


__all__ = [
    "HotTokensError",
    "InvalidPoolRecord",
    "RankingUnavailable",
    "SourceUnavailable",
]
