"""Custom exceptions for the kline feed.

Only unrecoverable failures are modelled as exceptions. Transport, envelope
and field-level problems are soft: they are logged and surface as warnings
on the returned result instead.
"""


class KlineFeedError(Exception):
    """Base exception for all kline feed errors."""


class PersistenceError(KlineFeedError):
    """Raised when the store cannot connect, migrate, write or commit.

    Fatal for the process. Restarting is the recovery path: persisted
    candles are the source of truth for which symbols are already known.
    """


class CronExpressionError(KlineFeedError):
    """Raised when a cadence is registered with an invalid cron expression."""
