# src/floorball_ingest/errors.py


class IngestError(RuntimeError):
    pass


class ConfigError(IngestError):
    """Missing or invalid environment configuration. Fatal before any work starts."""


class SourceUnreachableError(IngestError):
    """The source site could not be reached, or answered with an unexpected status after retries."""


class ProtocolNotFoundError(IngestError):
    """The protocol page answered 404; the match has no published report yet."""


class MatchNotFoundError(IngestError):
    pass


class PersistenceError(IngestError):
    """Deleting or inserting rows for one match failed. The match transaction was rolled back."""
