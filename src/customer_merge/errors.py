from __future__ import annotations


class CustomerMergeError(Exception):
    """Base class for every error raised by the merge engine."""


class ConfigurationError(CustomerMergeError):
    """Invalid weights, thresholds or limits. Raised before any scan starts."""


class DataAccessError(CustomerMergeError):
    """A customer, rule, statistics or suggestion source is unavailable."""


class ValidationError(CustomerMergeError):
    """Rejected operator input (manual rules, edits, fixes)."""


class NotFoundError(CustomerMergeError):
    """Unknown rule or suggestion id."""


class PersistenceConflict(CustomerMergeError):
    """A record changed underneath a writer holding a stale version."""

    def __init__(self, record_id: int, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"record {record_id} is at version {actual_version}, writer expected {expected_version}"
        )
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class ScanCancelled(CustomerMergeError):
    """Cooperative cancellation observed between blocks."""
