"""
Errors raised by the aggregation layer.

Only upstream failures and missing target entities escape a query. Malformed
references are reported through ``InvalidReference`` internally and dropped.
"""


class StaffingError(Exception):
    """Base class for aggregation-layer errors."""


class UpstreamUnavailable(StaffingError):
    """The remote store failed or timed out."""

    def __init__(self, message: str, *, collection: str | None = None):
        super().__init__(message)
        self.collection = collection


class StaleDataExceeded(UpstreamUnavailable):
    """A bulk refresh failed and the held snapshot is past the staleness ceiling."""

    def __init__(self, age_seconds: float, ceiling_seconds: float):
        super().__init__(
            f"bulk snapshot is {age_seconds:.0f}s old "
            f"(ceiling {ceiling_seconds:.0f}s) and could not be refreshed"
        )
        self.age_seconds = age_seconds
        self.ceiling_seconds = ceiling_seconds


class NotFound(StaffingError):
    """The target entity of a query does not exist."""

    def __init__(self, collection: str, key: str):
        super().__init__(f"{collection} record {key!r} not found")
        self.collection = collection
        self.key = key


class InvalidReference(StaffingError):
    """A foreign-key value is malformed."""

    def __init__(self, value: object):
        super().__init__(f"invalid record reference: {value!r}")
        self.value = value
