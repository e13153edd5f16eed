"""
Back2U — Service-layer exceptions.

Infrastructure failures (store, scoring oracle) propagate to the caller;
notification failures are caught and logged by the notifier.
"""


class Back2UError(Exception):
    """Base exception for matching-service errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ItemNotFoundError(Back2UError):
    """Source item id does not resolve to an item."""

    status_code = 404

    def __init__(self, item_id: object) -> None:
        super().__init__("Item not found")
        self.item_id = item_id


class MatchNotFoundError(Back2UError):
    """Match id does not resolve to a match record."""

    status_code = 404

    def __init__(self, match_id: object) -> None:
        super().__init__("Match not found")
        self.match_id = match_id


class NotificationNotFoundError(Back2UError):
    """Notification id does not resolve to a notification row."""

    status_code = 404

    def __init__(self, notification_id: object) -> None:
        super().__init__("Notification not found")
        self.notification_id = notification_id


class ScoringUnavailableError(Back2UError):
    """Scoring oracle unreachable or returned a non-success status."""


class RateLimitedError(ScoringUnavailableError):
    """Scoring oracle signalled throttling (HTTP 429)."""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded. Please try again later.") -> None:
        super().__init__(message)


class PersistenceError(Back2UError):
    """Store read or write failed."""


class NotificationError(Back2UError):
    """Notification dispatch failed."""
