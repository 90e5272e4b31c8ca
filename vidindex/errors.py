"""Error taxonomy shared by the index builders and the query path.

Only InvalidInput and NotFound (plus CorruptData on the top-level wedding
manifest) ever reach a caller of the search API. PartialAvailability is
raised inside a single source's branch and handled there.
"""


class VidIndexError(Exception):
    """Base class for vidindex errors."""


class InvalidInput(VidIndexError, ValueError):
    """A required query parameter is missing or malformed."""


class NotFound(VidIndexError, LookupError):
    """The wedding manifest, or the requested entity, does not exist."""


class CorruptData(VidIndexError, ValueError):
    """A stored filter, sketch or manifest could not be decoded."""


class PartialAvailability(VidIndexError):
    """A per-source object is missing; that source is left out of the result."""

    def __init__(self, source_id: str, key: str):
        super().__init__(f"Source {source_id!r} has no object at {key!r}")
        self.source_id = source_id
        self.key = key
