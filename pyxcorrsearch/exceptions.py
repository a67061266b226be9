"""Errors raised by the match, scoring and output layers."""


class SearchError(Exception):
    """Base class for pyXcorrSearch errors."""


class UnsetScoreError(SearchError, KeyError):
    """Raised when a score or rank is read before it has been computed."""

    def __init__(self, kind: str, score_type):
        self.kind = kind
        self.score_type = score_type
        super().__init__(f"{kind} for {getattr(score_type, 'name', score_type)} has not been set")

    def __str__(self):
        return self.args[0]


class RankNotComputedError(SearchError):
    """Raised when ranks are requested for a score type that was never ranked."""

    def __init__(self, score_type):
        self.score_type = score_type
        super().__init__(
            f"Ranks for {getattr(score_type, 'name', score_type)} have not been computed; "
            f"call populate_ranks first"
        )


class ConfigurationError(SearchError, ValueError):
    """Raised for invalid or inconsistent configuration, e.g. a decoy count mismatch."""


class CapacityExceededError(SearchError):
    """Raised when a bounded collection is full and the overflow policy is 'error'."""

    def __init__(self, container: str, capacity: int):
        self.container = container
        self.capacity = capacity
        super().__init__(f"{container} is full (capacity {capacity})")
