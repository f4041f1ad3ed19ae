"""Exception hierarchy for persist-log.

Startup errors (configuration, connection, dialect) are fatal. Record
errors stay inside the value builder and become failed records. Batch
errors discard the whole conversion of one flush.
"""


class PersistLogError(Exception):
    """Base class for all persist-log errors."""


class ConfigError(PersistLogError):
    """Invalid environment or command-line configuration."""


class InvalidDriverError(PersistLogError):
    def __init__(self, message: str = "invalid DB driver"):
        super().__init__(message)


class InvalidDsnError(PersistLogError):
    def __init__(self, message: str = "invalid DSN"):
        super().__init__(message)


class UnsupportedDialectError(PersistLogError):
    def __init__(self, dialect: str = ""):
        self.dialect = dialect
        super().__init__("unsupported SQL dialect")


class RecordError(PersistLogError):
    """A single record could not be converted into a row."""


class BatchError(PersistLogError):
    """The whole batch must be discarded."""


class InvalidRecordsError(BatchError):
    def __init__(self, message: str = "invalid_records"):
        super().__init__(message)


class EmptyRequestError(BatchError):
    def __init__(self, index: int | None = None):
        self.index = index
        super().__init__("empty_request")


class HashError(BatchError):
    """The hasher failed while fingerprinting a correlation line."""
