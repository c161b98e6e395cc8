"""Error taxonomy shared by the import, ranking and archive services."""


class RankdError(Exception):
    """Base class for errors raised by the core services."""


class ValidationError(RankdError, ValueError):
    """Raised for malformed input, always before any write happens."""


class NotFoundError(RankdError, LookupError):
    """Raised when an id-based reference points at a missing resource."""


class DataIntegrityError(RankdError):
    """Raised when stored data breaks an invariant the write paths guarantee."""
