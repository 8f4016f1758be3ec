"""Exceptions and data-quality issue kinds for the rides warehouse pipeline."""

from enum import Enum
from typing import Any


class PipelineError(Exception):
    """Base exception for errors that abort a pipeline run."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(PipelineError):
    """Missing or invalid configuration."""

    pass


class WarehouseUnavailableError(PipelineError):
    """Storage could not be reached, authenticated against or written to."""

    pass


class SchemaMismatchError(PipelineError):
    """A table is missing or lacks the expected columns."""

    pass


class IssueKind(str, Enum):
    """Per-row data-quality issues. These are recorded, never raised."""

    MISSING_NATURAL_KEY = "missing_natural_key"
    UNRESOLVED_FOREIGN_KEY = "unresolved_foreign_key"
    DUPLICATE_BOOKING_ID = "duplicate_booking_id"
    MALFORMED_MEASURE = "malformed_measure"
    MISSING_BOOKING_ID = "missing_booking_id"
    INVALID_BOOKING_DATETIME = "invalid_booking_datetime"
