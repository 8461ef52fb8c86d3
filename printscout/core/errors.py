"""Exception types shared across the search pipeline."""


class PrintScoutError(Exception):
    """Base class for printscout errors."""


class SourceUnavailableError(PrintScoutError):
    """A source could not be reached or answered with an unusable payload.

    Raised inside adapters only; SearchSource.fetch converts it into a failed
    SourceBatch so it never crosses the adapter boundary.
    """

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class MalformedRecordError(PrintScoutError):
    """A single source record cannot be turned into a canonical item."""


class SearchCancelledError(PrintScoutError):
    """The generation was superseded or cancelled before its final snapshot."""

    def __init__(self, generation: int):
        super().__init__(f"search generation {generation} was cancelled")
        self.generation = generation
