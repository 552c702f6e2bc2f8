"""Exception hierarchy shared by the bot, the dispatcher and the worker."""

from __future__ import annotations


class ReminderBotError(Exception):
    """Base class for every error raised on purpose by this service."""


class StoreError(ReminderBotError):
    """The persistent store rejected or failed an operation."""


class DependencyUnavailable(StoreError):
    """A backing service (database, Redis) could not be reached."""


class TimeResolutionError(ReminderBotError):
    """Day times for a (location, date) could not be resolved.

    Callers must treat this as "cannot schedule yet", never substitute a
    default time.
    """

    def __init__(self, location: str, day, reason: str | None = None):
        self.location = location
        self.day = day
        self.reason = reason
        detail = f"cannot resolve times for {location} on {day}"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail)


class TransportError(ReminderBotError):
    """The outbound message provider failed to accept a message."""
