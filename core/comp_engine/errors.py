"""
Error types for the Comparable Search Engine.

Validation failures subclass ValueError so callers that already guard
model construction with ``except ValueError`` keep working.
"""


class CompEngineError(Exception):
    """Base class for all comparable engine errors."""


class InvalidSearchCriteriaError(CompEngineError, ValueError):
    """Search request is malformed. Raised before any store query is issued."""


class InvalidPropertyRecordError(CompEngineError, ValueError):
    """A property record violates the data model. The whole batch is rejected."""


class StoreUnavailableError(CompEngineError, RuntimeError):
    """The property store cannot serve queries (closed or unreadable)."""


class IndexRebuildError(CompEngineError, RuntimeError):
    """Building a new index snapshot failed. The previous snapshot keeps serving."""
